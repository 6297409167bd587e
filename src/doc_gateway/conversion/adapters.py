import hmac
import logging
import os
import shutil
import signal
import subprocess
import time
from pathlib import Path

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from .errors import ConversionFailed
from .interfaces import ConversionJob, ConverterGateway, ProcessResult, ScratchStorage, TargetFormat

logger = logging.getLogger(__name__)


def _text(stream: str | bytes | None) -> str:
    # TimeoutExpired carries bytes even when the call asked for text
    if stream is None:
        return ""
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    return stream


class LocalScratchStorage(ScratchStorage):
    def __init__(self, scratch_dir: str | Path) -> None:
        self._base = Path(scratch_dir).resolve()
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def base(self) -> Path:
        return self._base

    def new_input_path(self, job_id: str, extension: str) -> Path:
        return self._base / f"{job_id}{extension}"

    def listing(self, job_id: str) -> list[str]:
        return sorted(p.name for p in self._base.iterdir() if p.name.startswith(job_id))

    def release(self, job: ConversionJob) -> None:
        """Remove everything the job left in scratch storage. Missing files are fine."""
        for path in (job.input_path, job.expected_output_path):
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.exception("cleanup failed for %s", path)
        if job.profile_dir.exists():
            shutil.rmtree(job.profile_dir, ignore_errors=True)


class BearerAuth:
    """Checks `Authorization: Bearer <token>` against the configured secret.

    The secret is either held in plain text or as an Argon2 PHC hash
    (`$argon2id$...`). With neither configured every request is refused.
    """

    def __init__(self, token: str | None = None, token_hash: str | None = None) -> None:
        self._token = token
        self._token_hash = token_hash
        self._hasher = PasswordHasher()

    @property
    def configured(self) -> bool:
        return bool(self._token or self._token_hash)

    @property
    def hashed(self) -> bool:
        return bool(self._token_hash)

    @staticmethod
    def parse(auth_header: str | None) -> str | None:
        if not auth_header:
            return None
        scheme, _, rest = auth_header.partition(" ")
        if scheme.lower() != "bearer":
            return None
        return rest.strip() or None

    def verify(self, auth_header: str | None) -> bool:
        token = self.parse(auth_header)
        if token is None:
            return False
        if self._token_hash:
            try:
                return self._hasher.verify(self._token_hash, token)
            except (VerificationError, InvalidHashError):
                return False
        if self._token:
            return hmac.compare_digest(token.encode("utf-8"), self._token.encode("utf-8"))
        return False


class LibreOfficeConverter(ConverterGateway):
    """Runs `soffice --headless --convert-to` as an argument vector, never through a shell."""

    def __init__(self, binary: str = "soffice", *, timeout_sec: float = 60, version_timeout_sec: float = 15) -> None:
        self._binary = binary
        self._timeout = timeout_sec
        self._version_timeout = version_timeout_sec

    def build_command(self, input_path: Path, output_dir: Path, target: TargetFormat, *, profile_dir: Path) -> list[str]:
        return [
            self._binary,
            "--headless",
            "--norestore",
            "--nolockcheck",
            f"-env:UserInstallation={profile_dir.resolve().as_uri()}",
            "--convert-to",
            target.filter_name,
            "--outdir",
            str(output_dir),
            str(input_path),
        ]

    def convert(self, input_path: Path, output_dir: Path, target: TargetFormat, *, profile_dir: Path) -> ProcessResult:
        cmd = self.build_command(input_path, output_dir, target, profile_dir=profile_dir)
        return self._run(cmd, self._timeout)

    def version(self) -> ProcessResult:
        return self._run([self._binary, "--version"], self._version_timeout)

    def _run(self, cmd: list[str], timeout: float) -> ProcessResult:
        started = time.monotonic()
        try:
            # own session: soffice forks soffice.bin, and a timeout must kill both
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
        except OSError as e:
            logger.error("converter could not be started: %s", e)
            raise ConversionFailed(f"Conversion failed: {e.strerror or e}", details="converter unavailable") from e
        with proc:
            try:
                stdout, stderr = proc.communicate(timeout=timeout)
            except subprocess.TimeoutExpired as e:
                _kill_process_group(proc)
                stdout, stderr = proc.communicate()
                logger.error("converter timed out after %ss: %s", timeout, cmd[0])
                raise ConversionFailed(
                    f"Conversion failed: converter timed out after {timeout:g}s",
                    details="timeout",
                    stdout=_text(stdout),
                    stderr=_text(stderr),
                ) from e
        elapsed = time.monotonic() - started
        logger.info("converter exited rc=%s in %.2fs", proc.returncode, elapsed)
        return ProcessResult(returncode=proc.returncode, stdout=stdout, stderr=stderr, duration_sec=elapsed)


def _kill_process_group(proc: subprocess.Popen) -> None:
    if hasattr(os, "killpg"):
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    else:
        proc.kill()
