from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


class JobStatus:
    PENDING = "pending"
    CONVERTING = "converting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str
    duration_sec: float = 0.0


@dataclass(frozen=True)
class TargetFormat:
    extension: str
    media_type: str
    signature: bytes
    filter_name: str


PDF = TargetFormat(extension="pdf", media_type="application/pdf", signature=b"%PDF-", filter_name="pdf")


def derive_output_path(input_path: Path, extension: str) -> Path:
    """Return where the converter writes its result for `input_path`.

    The converter keeps the input's stem and writes next to it, swapping only
    the final suffix.
    """
    return input_path.with_suffix("." + extension.lstrip("."))


@dataclass
class ConversionJob:
    id: str
    input_path: Path
    original_filename: str
    content_type: str
    size_bytes: int
    target: TargetFormat = PDF
    status: str = JobStatus.PENDING
    released: bool = False

    @property
    def output_dir(self) -> Path:
        return self.input_path.parent

    @property
    def expected_output_path(self) -> Path:
        return derive_output_path(self.input_path, self.target.extension)

    @property
    def profile_dir(self) -> Path:
        return self.output_dir / f"{self.id}.profile"


class ConverterGateway(Protocol):
    def convert(self, input_path: Path, output_dir: Path, target: TargetFormat, *, profile_dir: Path) -> ProcessResult:
        """Run the external converter synchronously and return its captured result.

        Raises ConversionFailed on timeout or when the executable cannot be started.
        This is a blocking call; callers should offload to threads if needed.
        """

    def version(self) -> ProcessResult:
        ...


class ScratchStorage(Protocol):
    def new_input_path(self, job_id: str, extension: str) -> Path:
        ...

    def listing(self, job_id: str) -> list[str]:
        ...

    def release(self, job: ConversionJob) -> None:
        ...
