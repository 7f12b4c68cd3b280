# ingest/app.py
import base64
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from ingest.config import Settings, load_settings
from ingest.db import Storage, StorageError
from ingest.middleware import BodySizeLimitMiddleware, cors_middleware, metrics_middleware
from ingest.monitoring import RequestMetrics, logger, setup_logger, setup_sentry
from ingest.schemas import RequestMeta

RECENT_ROWS = 5
IMAGE_FIELD = "image"

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_metrics(request: Request) -> Optional[RequestMetrics]:
    return request.app.state.metrics


def multipart_boundary(content_type: str) -> Optional[bytes]:
    media_type, _, params = content_type.partition(";")
    if media_type.strip().lower() != "multipart/form-data":
        return None
    for param in params.split(";"):
        key, _, value = param.strip().partition("=")
        if key.strip().lower() == "boundary" and value:
            return value.strip().strip('"').encode("latin-1")
    return None


async def read_image(request: Request) -> Optional[bytes]:
    """Bytes of the uploaded file part, or None when no file was sent.

    The part named ``image`` wins; otherwise the first file part of any name.
    Plain form fields are ignored. A multipart body missing its closing
    delimiter was cut off in transit and is refused with 400.
    """
    boundary = multipart_boundary(request.headers.get("content-type", ""))
    if boundary:
        body = await request.body()
        if b"--" + boundary + b"--" not in body:
            raise HTTPException(status_code=400, detail="Malformed multipart body: missing closing boundary")
    form = await request.form()
    try:
        upload = form.get(IMAGE_FIELD)
        if not isinstance(upload, UploadFile):
            upload = next((v for _, v in form.multi_items() if isinstance(v, UploadFile)), None)
        if upload is None:
            return None
        return await upload.read()
    finally:
        await form.close()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.get("/health")
async def health(settings: Settings = Depends(get_settings)):
    return {"status": "ok", "backend": settings.backend_name, "port": settings.port}


@router.get("/test-db")
async def test_db(storage: Storage = Depends(get_storage)):
    """
    GET /test-db
    Round-trip to the database and report its clock.
    """
    try:
        server_time = await run_in_threadpool(storage.ping)
    except StorageError as e:
        logger.exception("DB test error")
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "message": "Database connection FAILED",
                "details": str(e),
            },
        )
    return {
        "status": "success",
        "message": "Database connection is HEALTHY",
        "serverTime": server_time.isoformat(),
    }


@router.get("/init-db")
async def init_db(storage: Storage = Depends(get_storage)):
    """
    GET /init-db
    Create the requests table if it is missing. Meant for operators.
    """
    try:
        await run_in_threadpool(storage.ensure_schema)
    except StorageError as e:
        logger.exception("DB init error")
        return JSONResponse(status_code=500, content={"status": "error", "details": str(e)})
    logger.info("Schema initialized")
    return {"status": "success", "message": "Table 'requests' is ready"}


@router.get("/metrics")
async def metrics_endpoint(metrics: Optional[RequestMetrics] = Depends(get_metrics)):
    if metrics is None:
        return PlainTextResponse("Prometheus disabled", status_code=404)
    payload, content_type = metrics.render()
    return Response(content=payload, media_type=content_type)


@router.post("/")
@router.post("/api/a")
@router.post("/upload")
async def upload(
    request: Request,
    settings: Settings = Depends(get_settings),
    storage: Storage = Depends(get_storage),
):
    """
    POST /, /api/a, /upload
    Multipart body with an optional file part. Stores one row and returns the
    five most recent rows plus the uploaded bytes as base64.
    """
    image = await read_image(request)
    meta = RequestMeta(uploaded=image is not None)
    try:
        await run_in_threadpool(storage.insert, settings.backend_name, meta, image)
        # no transaction spans insert and select: the row stays if the select fails
        rows = await run_in_threadpool(storage.list_recent, RECENT_ROWS)
    except StorageError as e:
        logger.exception("Upload failed", extra={"path": request.url.path})
        return JSONResponse(status_code=500, content={"error": "Database not responding", "details": str(e)})

    logger.info(
        "Stored request",
        extra={"path": request.url.path, "uploaded": meta.uploaded, "image_bytes": len(image or b"")},
    )
    return {
        "backend": settings.backend_name,
        "rows": [r.model_dump(mode="json") for r in rows],
        "uploadedImage": base64.b64encode(image).decode("ascii") if image is not None else None,
    }


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    storage: Storage = app.state.storage
    if settings.db_init_on_startup:
        try:
            await run_in_threadpool(storage.ensure_schema)
        except StorageError:
            # /init-db can be retried once the database is reachable
            logger.exception("DB init on startup failed")
    logger.info(f"{settings.backend_name} running on port {settings.port}")
    try:
        yield
    finally:
        storage.dispose()


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    metrics: Optional[RequestMetrics] = None,
) -> FastAPI:
    """Build the service with explicitly constructed dependencies."""
    if settings is None:
        settings = load_settings()
    setup_logger(level=settings.log_level, as_json=settings.log_as_json)
    setup_sentry(settings.sentry_dsn, settings.environment)

    if settings.cors_enabled and settings.cors_allow_origin == "*":
        logger.warning("CORS is open to every origin (CORS_ALLOW_ORIGIN=*, set CORS_ENABLED=false to drop the headers)")
    if settings.db_ssl_no_verify:
        logger.warning("Database TLS certificate verification is disabled (DB_SSL_NO_VERIFY)")

    if storage is None:
        storage = Storage.from_settings(settings)
    if metrics is None and settings.prometheus_enabled:
        metrics = RequestMetrics()

    app = FastAPI(title=f"Upload ingestion service ({settings.backend_name})", lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = storage
    app.state.metrics = metrics if settings.prometheus_enabled else None

    app.include_router(router)

    # last registered runs first: cors -> metrics -> body limit -> router
    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.max_body_bytes)
    app.middleware("http")(metrics_middleware)
    app.middleware("http")(cors_middleware)
    return app
