class GatewayError(Exception):
    """Base class for failures that map to a structured JSON error response."""

    status_code = 500
    message = "Internal error"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: object = None,
        stdout: str | None = None,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message or self.message)
        self.details = details
        self.stdout = stdout
        self.stderr = stderr

    def to_dict(self) -> dict[str, object]:
        body: dict[str, object] = {"error": str(self)}
        if self.details is not None:
            body["details"] = self.details
        if self.stdout is not None:
            body["stdout"] = self.stdout
        if self.stderr is not None:
            body["stderr"] = self.stderr
        return body


class Unauthorized(GatewayError):
    status_code = 401
    message = "Unauthorized"


class NoFileUploaded(GatewayError):
    status_code = 400
    message = "No file uploaded"


class InvalidFileType(GatewayError):
    status_code = 400
    message = "Invalid file type"


class FileTooLarge(GatewayError):
    status_code = 400
    message = "File too large"


class ConversionFailed(GatewayError):
    message = "Conversion failed"


class OutputMissing(GatewayError):
    message = "PDF file was not created"


class InvalidOutput(GatewayError):
    message = "Converted file is not a valid PDF"


class InternalError(GatewayError):
    message = "Error reading converted PDF file"
