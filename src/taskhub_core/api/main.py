"""TaskHub Core FastAPI application."""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..ai import HTTPCompletionService
from ..config import get_settings
from ..database import SessionLocal
from ..errors import TaskHubError
from ..events import NotificationGateway
from ..oauth import GoogleOAuthClient
from ..realtime import ChannelBroker
from .routers import auth, projects, tasks, sprints, notifications, analytics, ai, realtime

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("taskhub-core")

logger.info("Starting TaskHub Core API")

# Create FastAPI app
app = FastAPI(
    title="TaskHub Core API",
    description="Multi-tenant project management with role-based access control",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Process-wide collaborators, injected into handlers through app.state
broker = ChannelBroker()
app.state.broker = broker
app.state.session_factory = SessionLocal
app.state.dispatcher = NotificationGateway(SessionLocal, broker)
app.state.completion_service = HTTPCompletionService(settings)
app.state.oauth_client = GoogleOAuthClient(settings)


@app.exception_handler(TaskHubError)
async def handle_domain_error(request: Request, exc: TaskHubError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, "errors": exc.details or None},
    )


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation failed", "errors": errors},
    )


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error"},
    )


# Include all routers under the configured API prefix
app.include_router(auth.router, prefix=f"{settings.api_prefix}/auth")
app.include_router(projects.router, prefix=f"{settings.api_prefix}/projects")
app.include_router(tasks.router, prefix=f"{settings.api_prefix}/tasks")
app.include_router(sprints.router, prefix=f"{settings.api_prefix}/sprints")
app.include_router(notifications.router, prefix=f"{settings.api_prefix}/notifications")
app.include_router(analytics.router, prefix=f"{settings.api_prefix}/analytics")
app.include_router(ai.router, prefix=f"{settings.api_prefix}/ai")
app.include_router(realtime.router, prefix=settings.api_prefix)


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "TaskHub Core API",
        "version": __version__,
        "api_prefix": settings.api_prefix,
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
