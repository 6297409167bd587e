import asyncio
import functools
import logging
import uuid
from typing import Awaitable, Callable

from .errors import ConversionFailed, FileTooLarge, InternalError, InvalidFileType, InvalidOutput, OutputMissing
from .formats import SIGNATURE_BYTES, matches_signature, resolve_extension
from .interfaces import PDF, ConversionJob, ConverterGateway, JobStatus, ScratchStorage, TargetFormat

logger = logging.getLogger(__name__)

CHUNK = 1024 * 1024
_TAIL = 4000


def _tail(text: str) -> str:
    return text[-_TAIL:]


class ConversionService:
    """Core domain service for one-shot document conversions.

    This service is framework-agnostic. A job is created from an upload,
    converted synchronously by the converter gateway, resolved into the
    output payload and finally released from scratch storage. Nothing is
    queued and nothing outlives the request that created the job.
    """

    def __init__(
        self,
        storage: ScratchStorage,
        converter: ConverterGateway,
        *,
        max_upload_bytes: int,
        allowed_mime: frozenset[str],
        target: TargetFormat = PDF,
    ) -> None:
        self._storage = storage
        self._converter = converter
        self._max_upload_bytes = max_upload_bytes
        self._allowed_mime = allowed_mime
        self._target = target

    @property
    def converter(self) -> ConverterGateway:
        return self._converter

    async def receive_upload(
        self,
        filename: str,
        content_type: str | None,
        reader: Callable[[int], Awaitable[bytes]],
    ) -> ConversionJob:
        """Validate an upload and persist it to scratch storage under a fresh name.

        The original file name only contributes its extension; it never
        becomes part of a path.
        """
        ext = resolve_extension(filename, content_type, self._allowed_mime)
        if ext is None:
            raise InvalidFileType(
                f"Invalid file type: {filename!r} ({content_type or 'no content type'}) is not an accepted document"
            )

        job_id = uuid.uuid4().hex
        input_path = self._storage.new_input_path(job_id, ext)
        size_bytes = 0
        head = b""
        try:
            with input_path.open("wb") as f_out:
                while True:
                    chunk = await reader(CHUNK)
                    if not chunk:
                        break
                    size_bytes += len(chunk)
                    if size_bytes > self._max_upload_bytes:
                        raise FileTooLarge(
                            f"File too large: upload exceeds the {self._max_upload_bytes // (1024 * 1024)} MB limit"
                        )
                    if len(head) < SIGNATURE_BYTES:
                        head += bytes(chunk[: SIGNATURE_BYTES - len(head)])
                    f_out.write(chunk)
            if not matches_signature(ext, head):
                raise InvalidFileType(f"Invalid file type: content does not look like a {ext} document")
        except BaseException:
            input_path.unlink(missing_ok=True)
            raise

        job = ConversionJob(
            id=job_id,
            input_path=input_path,
            original_filename=filename,
            content_type=content_type or "application/octet-stream",
            size_bytes=size_bytes,
            target=self._target,
        )
        logger.info("job %s accepted: %s bytes, %s", job.id, size_bytes, ext)
        return job

    def convert(self, job: ConversionJob) -> None:
        job.status = JobStatus.CONVERTING
        job.profile_dir.mkdir(parents=True, exist_ok=True)
        try:
            result = self._converter.convert(job.input_path, job.output_dir, job.target, profile_dir=job.profile_dir)
        except ConversionFailed:
            job.status = JobStatus.FAILED
            raise
        if result.returncode != 0:
            job.status = JobStatus.FAILED
            logger.error("job %s conversion failed rc=%s: %s", job.id, result.returncode, _tail(result.stderr))
            raise ConversionFailed(
                f"Conversion failed: converter exited with status {result.returncode}",
                details={"returncode": result.returncode},
                stdout=_tail(result.stdout),
                stderr=_tail(result.stderr),
            )

    def resolve(self, job: ConversionJob) -> bytes:
        """Read and verify the converter output for a converted job."""
        output_path = job.expected_output_path
        if not output_path.exists():
            job.status = JobStatus.FAILED
            listing = self._storage.listing(job.id)
            logger.error("job %s produced no output; scratch holds %s", job.id, listing)
            raise OutputMissing(details={"expected": output_path.name, "files": listing})
        try:
            payload = output_path.read_bytes()
        except OSError as e:
            job.status = JobStatus.FAILED
            logger.exception("job %s output could not be read", job.id)
            raise InternalError(details=str(e)) from e
        if not payload.startswith(job.target.signature):
            job.status = JobStatus.FAILED
            raise InvalidOutput(details={"size_bytes": len(payload)})
        job.status = JobStatus.SUCCEEDED
        logger.info("job %s succeeded: %s bytes of %s", job.id, len(payload), job.target.extension)
        return payload

    def _process(self, job: ConversionJob) -> bytes:
        self.convert(job)
        return self.resolve(job)

    async def run(self, job: ConversionJob) -> bytes:
        """Convert and resolve `job` off the event loop.

        On any failure the job is released before the error propagates. A
        cancelled caller cannot stop the converter thread, so in that case
        the release waits until the thread has finished writing.
        """
        work = asyncio.ensure_future(asyncio.to_thread(self._process, job))
        try:
            return await asyncio.shield(work)
        except asyncio.CancelledError:
            work.add_done_callback(functools.partial(self._release_when_done, job))
            raise
        except BaseException:
            self.release(job)
            raise

    def _release_when_done(self, job: ConversionJob, work: "asyncio.Future[bytes]") -> None:
        if not work.cancelled() and work.exception() is not None:
            logger.warning("job %s finished after its request was cancelled: %s", job.id, work.exception())
        self.release(job)

    def release(self, job: ConversionJob) -> None:
        """Free the job's scratch files. Only the first call per job has an effect."""
        if job.released:
            return
        job.released = True
        try:
            self._storage.release(job)
        except Exception:
            logger.exception("cleanup of job %s failed", job.id)
