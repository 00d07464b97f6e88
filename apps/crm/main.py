"""
Elta CRM backend application entry point.

FastAPI application wiring settings, logging, the database and all routes
for customers, leads, offers, Kalkia calculations, supplier prices and the
shared mailbox.
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.database import check_database_health, close_database_connections, init_database
from .core.errors import CRMError
from .core.logging import LogContext, configure_logging, get_logger
from .core.settings import settings
from .routes import auth, customers, inbox, kalkia, leads, offers, price_analytics, pricing, suppliers

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, release pooled connections on shutdown."""
    logger.info("Starting Elta CRM backend", version=settings.APP_VERSION)

    # Fail fast if essential configuration is missing
    settings.ensure_critical_settings()
    logger.debug("Configuration loaded", config=settings.mask_secrets())

    await init_database()
    logger.info(
        "Elta CRM backend ready",
        integrations=settings.validate_required_integrations(),
    )

    yield

    logger.info("Shutting down Elta CRM backend")
    close_database_connections()


app = FastAPI(
    title=settings.APP_NAME,
    description="CRM, job costing and offer management for electrical contractors",
    version=settings.APP_VERSION,
    docs_url="/api/docs" if settings.debug_mode else None,
    redoc_url="/api/redoc" if settings.debug_mode else None,
    openapi_url="/api/openapi.json" if settings.debug_mode else None,
    lifespan=lifespan
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"]
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request,
                                       exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "status": "error",
            "message": "Validation failed",
            "details": [
                {
                    "loc": err.get("loc"),
                    "msg": str(err.get("msg")),
                    "type": err.get("type")
                }
                for err in exc.errors()
            ],
            "request_id": _request_id(request)
        }
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request,
                                 exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": "error",
            "message": exc.detail,
            "request_id": _request_id(request)
        },
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(CRMError)
async def crm_exception_handler(request: Request, exc: CRMError):
    """Domain errors raised by services, rendered with their own status code."""
    logger.info(
        "Request rejected",
        path=request.url.path,
        code=exc.code,
        message=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": "error",
            "code": exc.code,
            "message": exc.message,
            "details": exc.details,
            "request_id": _request_id(request)
        }
    )


@app.exception_handler(IntegrityError)
async def integrity_exception_handler(request: Request, exc: IntegrityError):
    logger.warning("Integrity error", path=request.url.path, error=str(exc.orig))
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "status": "error",
            "message": "Conflicting data",
            "request_id": _request_id(request)
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler for unexpected errors.

    Logs full details while returning a generic message outside debug mode.
    """
    logger.error("Unhandled exception", error=str(exc), exc_info=True)

    message = str(exc) if settings.debug_mode else "An internal error occurred"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "status": "error",
            "message": message,
            "request_id": _request_id(request)
        }
    )


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add a request ID for tracing and echo it back in the response."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id

    with LogContext(request_id=request_id):
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


app.include_router(auth, prefix=f"{settings.API_V1_PREFIX}/auth", tags=["authentication"])
app.include_router(customers, prefix=f"{settings.API_V1_PREFIX}/customers", tags=["customers"])
app.include_router(leads, prefix=f"{settings.API_V1_PREFIX}/leads", tags=["leads"])
app.include_router(offers, prefix=f"{settings.API_V1_PREFIX}/offers", tags=["offers"])
app.include_router(kalkia, prefix=f"{settings.API_V1_PREFIX}/kalkia", tags=["kalkia"])
app.include_router(suppliers, prefix=f"{settings.API_V1_PREFIX}/suppliers", tags=["suppliers"])
app.include_router(price_analytics, prefix=f"{settings.API_V1_PREFIX}/price-analytics", tags=["price-analytics"])
app.include_router(pricing, prefix=f"{settings.API_V1_PREFIX}/pricing", tags=["pricing"])
app.include_router(inbox, prefix=f"{settings.API_V1_PREFIX}/inbox", tags=["inbox"])


@app.get("/health", tags=["system"])
async def health_check() -> Dict[str, Any]:
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT
    }


@app.get("/health/detailed", tags=["system"])
async def detailed_health_check() -> Dict[str, Any]:
    """Health check with database and integration status."""
    health_status = {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "components": {}
    }

    if check_database_health():
        health_status["components"]["database"] = "healthy"
    else:
        health_status["components"]["database"] = "unhealthy"
        health_status["status"] = "degraded"

    health_status["components"]["integrations"] = settings.validate_required_integrations()
    return health_status


@app.get("/", tags=["system"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "documentation": ("/api/docs"
                          if settings.debug_mode
                          else "Contact support for API documentation"),
        "health": "/health",
        "status": "operational"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "apps.crm.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.debug_mode
    )
