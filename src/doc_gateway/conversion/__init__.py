"""
Domain layer for document conversion.
Provides interfaces (gateways), the error taxonomy and a service that runs a
single conversion job end to end, so front-ends (HTTP or others) can use the
same core logic.
"""

from .errors import (
    ConversionFailed,
    FileTooLarge,
    GatewayError,
    InternalError,
    InvalidFileType,
    InvalidOutput,
    NoFileUploaded,
    OutputMissing,
    Unauthorized,
)
from .interfaces import PDF, ConversionJob, ConverterGateway, JobStatus, ScratchStorage, TargetFormat, derive_output_path
from .service import ConversionService
