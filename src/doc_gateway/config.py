import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path


DEFAULT_ALLOWED_MIME = (
    "application/msword",  # .doc
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",  # docx
    "application/vnd.oasis.opendocument.text",  # odt
    "application/rtf",
    "text/rtf",
    "application/vnd.ms-excel",  # .xls
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",  # xlsx
    "application/vnd.oasis.opendocument.spreadsheet",  # ods
    "application/vnd.ms-powerpoint",  # .ppt
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",  # pptx
    "application/vnd.oasis.opendocument.presentation",  # odp
)

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and passed explicitly."""

    host: str = "0.0.0.0"
    port: int = 3000
    auth_token: str | None = None
    auth_token_hash: str | None = None
    max_upload_mb: int = 50
    convert_timeout_sec: int = 60
    converter_bin: str = "soffice"
    scratch_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "doc_gateway")
    allowed_mime: frozenset[str] = frozenset(DEFAULT_ALLOWED_MIME)
    log_level: str = "INFO"
    reload: bool = False

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "Settings":
        """Read settings from the environment, optionally seeded from a `.env` file.

        Values already present in the environment win over the `.env` file.
        """
        if dotenv:
            from dotenv import load_dotenv

            load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

        scratch = os.getenv("SCRATCH_DIR")
        allowed = os.getenv("ALLOWED_MIME")
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 3000),
            auth_token=os.getenv("AUTH_TOKEN") or None,
            auth_token_hash=os.getenv("AUTH_TOKEN_HASH") or None,
            max_upload_mb=_env_int("MAX_UPLOAD_MB", 50),
            convert_timeout_sec=_env_int("CONVERT_TIMEOUT_SEC", 60),
            converter_bin=os.getenv("CONVERTER_BIN", "soffice"),
            scratch_dir=(Path(scratch) if scratch else Path(tempfile.gettempdir()) / "doc_gateway").resolve(),
            allowed_mime=(
                frozenset(m.strip().lower() for m in allowed.split(",") if m.strip())
                if allowed
                else frozenset(DEFAULT_ALLOWED_MIME)
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            reload=_env_flag("RELOAD"),
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
