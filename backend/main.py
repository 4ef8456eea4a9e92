"""
FastAPI Backend for the Story-to-Video Generator
"""

import logging
import os
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
from sqlalchemy import text
import time

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=False,
)

logger = structlog.get_logger()

# Import settings
from config import settings
from database import get_db_context, init_db
from pipeline.error_handler import PipelineError
import auth


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("application_startup", message="FastAPI application starting up")

    # Validate configuration
    try:
        settings.validate_storage_config()
        missing = settings.validate_provider_config()
        logger.info("config_validated", missing_credentials=missing)
    except ValueError as e:
        logger.error("config_validation_failed", error=str(e))
        raise

    # Initialize database
    try:
        init_db()
        logger.info("database_tables_created", message="Database initialized successfully")
    except Exception as e:
        logger.error("database_init_error", error=str(e))

    yield

    logger.info("application_shutdown", message="FastAPI application shutting down")


# Initialize FastAPI app
app = FastAPI(
    title="Story Video Generator API",
    description="Turns a story into scenes, scene images and scene videos",
    version="1.0.0",
    lifespan=lifespan,
    swagger_ui_parameters={
        "persistAuthorization": True,
    }
)


# Configure OpenAPI schema to include API key authentication
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    from fastapi.openapi.utils import get_openapi

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "ApiKeyAuth": {
            "type": "apiKey",
            "in": "header",
            "name": auth.API_KEY_HEADER,
            "description": "API key for authentication. Use the value from your .env file (API_KEY)"
        },
        "UserId": {
            "type": "apiKey",
            "in": "header",
            "name": auth.USER_ID_HEADER,
            "description": "Id of the acting user, forwarded by the session layer"
        }
    }
    openapi_schema["security"] = [{"ApiKeyAuth": [], "UserId": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

# CORS middleware configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# API Authentication middleware - applies to all /api/ routes
@app.middleware("http")
async def api_authentication_middleware(request: Request, call_next):
    """Authenticate all /api/ routes with API key"""
    if not request.url.path.startswith("/api/"):
        return await call_next(request)

    # Skip authentication for CORS preflight requests
    if request.method == "OPTIONS":
        return await call_next(request)

    # No key configured (development mode)
    if not auth.api_key_required():
        return await call_next(request)

    api_key = request.headers.get(auth.API_KEY_HEADER) or request.query_params.get(auth.API_KEY_QUERY)

    if not api_key:
        return JSONResponse(
            status_code=401,
            content={
                "error": "Unauthorized",
                "message": "API key missing. Provide X-API-Key header or ?api_key=YOUR_KEY",
                "details": None
            },
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not auth.check_api_key(api_key):
        return JSONResponse(
            status_code=401,
            content={
                "error": "Unauthorized",
                "message": "Invalid API key",
                "details": None
            },
            headers={"WWW-Authenticate": "ApiKey"}
        )

    return await call_next(request)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests"""
    start_time = time.time()

    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None
    )

    try:
        response = await call_next(request)
        process_time = time.time() - start_time

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time=f"{process_time:.3f}s"
        )

        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.error(
            "request_failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            process_time=f"{process_time:.3f}s"
        )
        raise


# Pipeline error handler
@app.exception_handler(PipelineError)
async def pipeline_exception_handler(request: Request, exc: PipelineError):
    """Map pipeline errors onto 400/404/409/502 responses"""
    exc.log_error()
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions"""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_type=type(exc).__name__
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
            "details": {"error": str(exc)} if settings.DEBUG else None
        }
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint

    Returns:
        dict: Health status of the API, database and Redis
    """
    database_healthy = False
    try:
        with get_db_context() as db:
            db.execute(text("SELECT 1"))
        database_healthy = True
    except Exception as e:
        logger.error("health_check_database_error", error=str(e))

    from redis_client import redis_client
    try:
        redis_healthy = redis_client.ping()
    except Exception as e:
        logger.error("health_check_redis_error", error=str(e))
        redis_healthy = False

    return {
        "status": "healthy" if database_healthy else "unhealthy",
        "service": "story-video-generator",
        "version": "1.0.0",
        "database": "ok" if database_healthy else "unavailable",
        "redis": "ok" if redis_healthy else "unavailable",
    }


# Serve locally stored media
if settings.STORAGE_BACKEND.lower() == "local":
    os.makedirs(settings.LOCAL_STORAGE_DIR, exist_ok=True)
    app.mount("/media", StaticFiles(directory=settings.LOCAL_STORAGE_DIR), name="media")


# Include routers
from routers import projects, scenes, generate, models as models_router

app.include_router(projects.router)
app.include_router(scenes.router)
app.include_router(generate.router)
app.include_router(models_router.router)


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Story Video Generator API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "projects": "/api/projects",
            "scenes": "/api/scenes/{scene_id}",
            "generate_scenes": "/api/generate/scenes",
            "generate_image": "/api/generate/image/{scene_id}",
            "generate_video": "/api/generate/video/{scene_id}",
            "generate_images": "/api/generate/images",
            "generate_videos": "/api/generate/videos",
            "video_status": "/api/generate/video/status/{task_id}",
            "reconcile": "/api/generate/reconcile/{project_id}"
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
