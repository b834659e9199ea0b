import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from vaultshare.app.api.v1.router import api_router
from vaultshare.app.core.config import settings
from vaultshare.app.core.exceptions import VaultShareError
from vaultshare.app.core.logging import configure_logging
from vaultshare.app.core.timeutils import utcnow
from vaultshare.app.db.init_db import init_models

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# --- LIFESPAN: create tables on startup ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    logger.info("%s started (%s)", settings.PROJECT_NAME, settings.ENVIRONMENT)
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Integrity-Status", "X-Encryption-Algorithm", "X-Content-SHA256"],
    )


# ─────────────────────────────────────────────────────────────────────────────
# Error responses: always {success: false, message}, never internals
# ─────────────────────────────────────────────────────────────────────────────
def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@app.exception_handler(VaultShareError)
async def vaultshare_error_handler(request: Request, exc: VaultShareError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s", type(exc).__name__, request.method, request.url.path)
    return _error(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return _error(404, "Route not found.")
    if exc.status_code >= 500:
        return _error(exc.status_code, "Internal server error.")
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # location and message only; the offending input may be a password
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request."
    return _error(400, message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error.")


app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get(f"{settings.API_V1_STR}/health")
async def health():
    return {
        "success": True,
        "message": f"{settings.PROJECT_NAME} API is running",
        "data": {"timestamp": utcnow().isoformat(), "version": settings.PROJECT_VERSION},
    }


@app.get("/")
def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME} API"}
