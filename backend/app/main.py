import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .services.moderation import build_moderation_service

settings = get_settings()

# Configure logging
handlers = [logging.StreamHandler()]
if settings.LOG_TO_FILE:
    # Ensure logs directory exists
    logs_dir = Path(__file__).parent.parent / "logs"
    logs_dir.mkdir(exist_ok=True)
    handlers.append(logging.FileHandler(logs_dir / "moderation.log", encoding="utf-8"))

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=handlers,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Load the rule table and wire adapters once; the term table is never reloaded
    app.state.moderation_service = build_moderation_service(get_settings())
    try:
        yield
    finally:
        app.state.moderation_service = None
        # Close logging file handlers to avoid unclosed file warnings during tests
        root_logger = logging.getLogger()
        for h in list(root_logger.handlers):
            if isinstance(h, logging.FileHandler):
                h.flush()
                h.close()
                root_logger.removeHandler(h)


# Initialize FastAPI app with lifespan
app = FastAPI(
    title="Campus Content Moderation API",
    description="Moderation verdicts for lost & found reports, events and academic resources",
    version=settings.VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Set up CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_origin_regex=getattr(settings, "CORS_ORIGIN_REGEX", None),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/api/health")
async def health_check():
    s = get_settings()
    return {
        "status": "healthy",
        "service": s.PROJECT_NAME,
        "environment": s.ENVIRONMENT,
        "moderation_profile": s.MODERATION_PROFILE,
    }


# Import and include routers
from .api.v1.api import api_router  # noqa: E402

# API v1 routes
app.include_router(api_router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    return {"message": "Welcome to the Campus Content Moderation API", "docs": "/api/docs", "version": settings.VERSION}


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    # Non-JSON bodies get the generic fault response; field errors stay 400
    if any(err.get("type") == "json_invalid" for err in exc.errors()):
        logger.error("Unparsable request body on %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request body"},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )
