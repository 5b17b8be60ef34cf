"""
Main FastAPI application of QanoonMate.

Serves:
- the client and lawyer web apps
- the admin dashboard
- the payment gateway callback
"""
import os
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from .config import settings
from .init_db import init_db, check_db_connection
from .routers import auth, health, lawyers, consultations, clients, faqs, profile, payments, chat
from .routers import settings as settings_router
from .routers import websocket as ws_router
from .scheduler import setup_scheduler, start_scheduler, shutdown_scheduler
from .utils.structured_logging import configure_logging
from .exceptions import (
    QanoonMateError,
    NotFoundError,
    PermissionDeniedError,
    ConflictError,
    ValidationError,
    ExternalServiceError,
)

configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifecycle.

    On startup:
    - checks the database connection
    - creates tables and seeds the admin account
    - starts the scheduler unless ENABLE_SCHEDULER is off

    On shutdown:
    - stops the scheduler
    """
    print("🚀 Starting QanoonMate API...")

    if await check_db_connection():
        await init_db()
    else:
        print("⚠️  Warning: database is not reachable")

    # With ENABLE_SCHEDULER=false the jobs run in the run_scheduler container
    if settings.ENABLE_SCHEDULER:
        try:
            setup_scheduler()
            start_scheduler()
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}", exc_info=True)
            print(f"⚠️  Warning: scheduler did not start: {e}")
    else:
        print("ℹ️  Scheduler disabled in this container")

    yield

    print("🛑 Stopping QanoonMate API...")
    shutdown_scheduler()


app = FastAPI(
    title="QanoonMate API",
    description="""
    Legal services marketplace: lawyer directory and verification,
    consultation booking, payments, FAQ knowledge base and an AI legal assistant.

    ## Authentication
    Send `Authorization: Bearer <token>` from `POST /api/auth/login`.
    WebSocket endpoints take the token in the `token` query parameter.

    ## Idempotency
    `POST /api/consultations/book` accepts an `Idempotency-Key` header.

    ## Real-time updates
    - **WebSocket**: `WS /ws/consultations/{consultation_id}`
    - **Assistant chat**: `WS /ws/chat`
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    redirect_slashes=False
)

allowed_origins = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS != "*" else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Request validation errors (pydantic)"""
    body = await request.body()

    errors = []
    for error in exc.errors():
        error_dict = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }

        input_value = error.get("input")
        if isinstance(input_value, bytes):
            try:
                error_dict["input"] = input_value.decode("utf-8")
            except UnicodeDecodeError:
                error_dict["input"] = f"<bytes object of length {len(input_value)}>"
        else:
            error_dict["input"] = input_value

        # ValueError in ctx is not JSON serializable
        if "ctx" in error:
            ctx = dict(error["ctx"])
            if "error" in ctx and isinstance(ctx["error"], Exception):
                ctx["error"] = str(ctx["error"])
            error_dict["ctx"] = ctx
        errors.append(error_dict)

    logger.warning(f"Validation error on {request.url.path}: {errors}")

    body_str = None
    if body:
        try:
            body_str = body.decode("utf-8")
        except UnicodeDecodeError:
            body_str = f"<bytes object of length {len(body)}>"

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": errors, "body": body_str},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    logger.warning(f"Not found: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": exc.message, "details": exc.details},
    )


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
    logger.warning(f"Permission denied: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": exc.message, "details": exc.details},
    )


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    """Conflicts and disallowed status transitions"""
    logger.warning(f"Conflict: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": exc.message, "details": exc.details},
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Business rule violations and rejected uploads"""
    logger.warning(f"Validation error: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": exc.message, "details": exc.details},
    )


@app.exception_handler(ExternalServiceError)
async def external_service_error_handler(request: Request, exc: ExternalServiceError):
    logger.error(f"External service error ({exc.system}): {exc.message}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={
            "detail": exc.message,
            "system": exc.system,
            "details": exc.details
        },
    )


@app.exception_handler(QanoonMateError)
async def domain_error_handler(request: Request, exc: QanoonMateError):
    logger.error(f"Unhandled domain error: {exc.message}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": exc.message, "details": exc.details},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(lawyers.router, prefix="/api/lawyers", tags=["lawyers"])
app.include_router(consultations.router, prefix="/api/consultations", tags=["consultations"])
app.include_router(clients.router, prefix="/api/clients", tags=["clients"])
app.include_router(faqs.router, prefix="/api/faqs", tags=["faqs"])
app.include_router(settings_router.router, prefix="/api/settings", tags=["settings"])
app.include_router(profile.router, prefix="/api/profile", tags=["profile"])
app.include_router(payments.router, prefix="/api/payments", tags=["payments"])
app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
app.include_router(ws_router.router, prefix="/ws", tags=["websocket"])

os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")


@app.get("/")
async def root():
    return {
        "service": "QanoonMate",
        "version": "1.0.0",
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "qanoonmate.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=settings.DEBUG
    )
