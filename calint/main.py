import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import FRONTEND_URL, LOG_LEVEL
from .database import Base, engine
from .domain.auth.router import router as auth_router
from .domain.settings.router import router as settings_router
from .domain.sync.router import router as webhook_router
from .errors import HTTP_STATUS_BY_KIND, CalIntError, ErrorKind, RemoteServiceError
from .security_headers import SecurityHeadersMiddleware

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

SECURITY_HEADERS_ENABLED = os.getenv("SECURITY_HEADERS_ENABLED", "true").lower() == "true"
API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    Base.metadata.create_all(bind=engine, checkfirst=True)
    logger.info("Database tables created successfully")
    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Calint API", version="1.0.0", lifespan=lifespan)


def _envelope(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, "data": None})


@app.exception_handler(CalIntError)
async def calint_exception_handler(request: Request, exc: CalIntError):
    """Map typed failures from the data endpoints onto status codes"""
    status_code = HTTP_STATUS_BY_KIND.get(exc.kind, 500)
    if isinstance(exc, RemoteServiceError) and exc.kind not in (ErrorKind.CREDENTIAL, ErrorKind.NOT_FOUND):
        status_code = 502
    if status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.warning(f"⚠️ {request.method} {request.url.path}: {exc.code} {exc.message}")
    return _envelope(status_code, exc.message)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _envelope(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=422, content={"success": False, "error": "Invalid request", "data": exc.errors()}
    )


if SECURITY_HEADERS_ENABLED:
    app.add_middleware(SecurityHeadersMiddleware, exclude_paths=[f"{API_PREFIX}/healthcheck", "/docs", "/openapi.json"])
    logger.info("Security headers enabled")
else:
    logger.warning("Security headers DISABLED - only use in development!")

# CORS Configuration
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", FRONTEND_URL).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Routes
app.include_router(auth_router, prefix=API_PREFIX)
app.include_router(settings_router, prefix=API_PREFIX)
app.include_router(webhook_router, prefix=API_PREFIX)


@app.get(f"{API_PREFIX}/healthcheck")
def healthcheck():
    return {"status": "ok"}
