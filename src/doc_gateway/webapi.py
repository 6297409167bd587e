import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import Receive, Scope, Send

from doc_gateway import __version__
from doc_gateway.config import Settings, configure_logging
from doc_gateway.conversion import (
    ConversionFailed,
    ConversionService,
    ConverterGateway,
    GatewayError,
    InternalError,
    NoFileUploaded,
    ScratchStorage,
    Unauthorized,
)
from doc_gateway.conversion.adapters import BearerAuth, LibreOfficeConverter, LocalScratchStorage

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({"/health"})
UPLOAD_FIELD = "file"


class ReleasingResponse(Response):
    """Response that calls `on_close` once sending ends, whether or not the send succeeded."""

    def __init__(self, *args, on_close: Callable[[], None], **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._on_close = on_close

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            # no await here: a cancelled scope would abort it
            self._on_close()


def create_app(
    settings: Settings | None = None,
    *,
    converter: ConverterGateway | None = None,
    storage: ScratchStorage | None = None,
) -> FastAPI:
    """Build the gateway application from an immutable settings object.

    `converter` and `storage` default to the LibreOffice subprocess adapter
    and local scratch storage described by `settings`.
    """
    if settings is None:
        settings = Settings.from_env()
    auth = BearerAuth(settings.auth_token, settings.auth_token_hash)
    if not auth.configured:
        logger.warning("no AUTH_TOKEN or AUTH_TOKEN_HASH configured; all guarded requests will be refused")

    service = ConversionService(
        storage=storage or LocalScratchStorage(settings.scratch_dir),
        converter=converter or LibreOfficeConverter(settings.converter_bin, timeout_sec=settings.convert_timeout_sec),
        max_upload_bytes=settings.max_upload_bytes,
        allowed_mime=settings.allowed_mime,
    )

    app = FastAPI(
        title="Document Conversion Gateway",
        version=__version__,
        description="Converts uploaded office documents to PDF with headless LibreOffice.",
    )
    app.state.settings = settings
    app.state.service = service

    @app.middleware("http")
    async def require_bearer(request: Request, call_next):
        # Runs before the body is read, so refused uploads never reach scratch storage
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)
        header = request.headers.get("authorization")
        if auth.hashed:
            # an Argon2 check takes hundreds of milliseconds of CPU
            allowed = await asyncio.to_thread(auth.verify, header)
        else:
            allowed = auth.verify(header)
        if not allowed:
            logger.warning("unauthorized %s %s", request.method, request.url.path)
            return JSONResponse(
                status_code=Unauthorized.status_code,
                content=Unauthorized().to_dict(),
                headers={"WWW-Authenticate": "Bearer"},
            )
        return await call_next(request)

    @app.exception_handler(GatewayError)
    async def gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(level, "%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

    @app.get("/health")
    def health() -> dict[str, str]:
        """Liveness check; never requires a token."""
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        return {"status": "ok", "timestamp": now}

    @app.get("/test-converter")
    async def check_converter() -> dict[str, str]:
        """Report the converter's version string, proving it can be started."""
        result = await asyncio.to_thread(service.converter.version)
        if result.returncode != 0:
            raise ConversionFailed(
                "Converter test failed",
                details={"returncode": result.returncode},
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return {"status": "ok", "version": result.stdout.strip()}

    @app.post("/convert")
    async def convert(request: Request) -> Response:
        """Convert the multipart upload in field "file" to PDF and return it as an attachment."""
        form = await request.form()
        job = None
        try:
            upload = form.get(UPLOAD_FIELD)
            if not isinstance(upload, UploadFile) or not upload.filename:
                raise NoFileUploaded()
            try:
                job = await service.receive_upload(upload.filename, upload.content_type, upload.read)
            except GatewayError:
                raise
            except Exception as e:
                logger.exception("upload %r could not be stored", upload.filename)
                raise InternalError("Could not store uploaded file", details=str(e)) from e
        finally:
            try:
                await form.close()
            except BaseException:
                if job is not None:
                    service.release(job)
                raise

        # run() releases the job itself on every failure path
        try:
            payload = await service.run(job)
        except GatewayError:
            raise
        except Exception as e:
            logger.exception("job %s failed unexpectedly", job.id)
            raise InternalError(details=str(e)) from e

        filename = f"converted.{job.target.extension}"
        return ReleasingResponse(
            content=payload,
            media_type=job.target.media_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
            on_close=functools.partial(service.release, job),
        )

    return app


def run() -> None:
    """Run the gateway with uvicorn.

    Exposes the app at host:port (default 0.0.0.0:3000). Set HOST/PORT env vars to override.
    """
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    logger.info("starting gateway on %s:%s, converter=%s", settings.host, settings.port, settings.converter_bin)
    uvicorn.run(
        "doc_gateway.webapi:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
