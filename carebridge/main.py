import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import ALLOWED_ORIGINS
from .database import Base, engine
from .domain.assistance import router as assistance_router
from .domain.funding import router as donations_router
from .domain.funding import withdrawals_router
from .domain.scheduling import doctors_router
from .domain.scheduling import router as appointments_router
from .exceptions import CareBridgeError
from .routes.admin import router as admin_router
from .routes.notifications import router as notifications_router
from .routes.patients import router as patients_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("botocore").setLevel(logging.WARNING)

# Error kinds for plain HTTP errors raised by FastAPI and the security helpers
HTTP_ERROR_KINDS = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")
            raise

    from .rate_limiter import get_redis_client

    get_redis_client()

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="CareBridge API", version="1.0.0", lifespan=lifespan)


def error_body(message: str, error: str) -> dict:
    return {"success": False, "message": message, "error": error}


@app.exception_handler(CareBridgeError)
async def domain_exception_handler(request: Request, exc: CareBridgeError):
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.error))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    error = HTTP_ERROR_KINDS.get(exc.status_code, "bad_request")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), error),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Missing Authorization headers become 401; every other validation failure
    is a 400 validation_error.
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content=error_body(
                    "Not authenticated. Please provide a valid Bearer token.", "unauthorized"
                ),
            )

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content=error_body(f"{field}: {message}" if field else message, "validation_error"),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=error_body("Internal server error", "internal"))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration_ms = (time.time() - start) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms:.0f}ms)")
    return response


logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(appointments_router)
app.include_router(doctors_router)
app.include_router(patients_router)
app.include_router(assistance_router)
app.include_router(withdrawals_router)
app.include_router(donations_router)
app.include_router(notifications_router)
app.include_router(admin_router)


@app.get("/")
def root():
    return {"message": "CareBridge API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
