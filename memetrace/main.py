import asyncio
import logging
import mimetypes
import structlog
import sys
import time
from typing import Awaitable, Optional, TypeVar
from contextlib import asynccontextmanager

from fastapi import FastAPI, UploadFile, File, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from memetrace import __version__, config
from memetrace.core.database import (
    check_database_connection, close_connection_pool, fetch_dataset, get_database_stats
)
from memetrace.core.utils import (
    calculate_content_hash, encode_media, format_file_size, inspect_image, new_media_id
)
from memetrace.models.attribution import AttributionResult, ErrorResponse, HealthResponse
from memetrace.services.errors import PipelineError
from memetrace.services.inference import GeminiClient
from memetrace.services.pipeline import AttributionPipeline

# Configure structured logging
logging.basicConfig(format="%(message)s", stream=sys.stdout, level=config.LOG_LEVEL)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Nginx-style status for requests the client abandoned
HTTP_499_CLIENT_CLOSED_REQUEST = 499

T = TypeVar("T")

# Global services
inference_client: Optional[GeminiClient] = None
attribution_pipeline: Optional[AttributionPipeline] = None

class ClientDisconnected(Exception):
    """The client went away before the pipeline finished."""
    pass

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    global inference_client, attribution_pipeline

    # Startup
    logger.info("Starting MemeTrace API", version=__version__)
    try:
        inference_client = GeminiClient.from_env()
        attribution_pipeline = AttributionPipeline(inference_client)
        logger.info("Attribution pipeline initialized",
                   model=inference_client.model,
                   inference_configured=inference_client.configured)

        # Test database connection
        if await run_in_threadpool(check_database_connection):
            logger.info("Dataset database connection verified")
        else:
            logger.warning("Database connection check failed")

    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutting down MemeTrace API")
    close_connection_pool()

# Create FastAPI application
app = FastAPI(
    title="MemeTrace API",
    description="Creator attribution for memes through a four-stage vision and language model pipeline",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        422: {"model": ErrorResponse, "description": "Validation Error"},
        500: {"model": ErrorResponse, "description": "Internal Server Error"},
    }
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

def validate_file(file: UploadFile) -> str:
    """Validate uploaded file metadata and return its content type."""
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename is required"
        )

    # Check file size
    if file.size and file.size > config.MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File size exceeds maximum allowed size of {config.MAX_FILE_SIZE} bytes"
        )

    # Determine content type
    content_type = file.content_type or mimetypes.guess_type(file.filename)[0]
    if not content_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Could not determine file type"
        )

    if content_type not in config.SUPPORTED_IMAGE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Unsupported media type: {content_type}. Supported types: {', '.join(sorted(config.SUPPORTED_IMAGE_TYPES))}"
        )

    return content_type

async def run_until_disconnected(request: Request, work: Awaitable[T]) -> T:
    """
    Await work while watching the client connection.

    Raises:
        ClientDisconnected: the client went away; the work has been cancelled
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=config.DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                task.cancel()
                await asyncio.wait({task})
                raise ClientDisconnected()
    except asyncio.CancelledError:
        task.cancel()
        raise

@app.get("/", response_model=dict)
async def root():
    """Root endpoint with API information."""
    return {
        "name": "MemeTrace API",
        "version": __version__,
        "description": "Multi-stage creator attribution for memes",
        "docs_url": "/docs",
        "health_url": "/health",
        "analyze_url": "/analyze",
        "model": config.GEMINI_MODEL
    }

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint with dataset and inference status."""
    try:
        db_healthy = await run_in_threadpool(check_database_connection)

        components = {
            "database": "healthy" if db_healthy else "unhealthy",
            "inference_model": "healthy" if inference_client and inference_client.configured else "unconfigured",
            "pipeline": "healthy" if attribution_pipeline else "not_initialized"
        }

        overall_status = "healthy" if all(state == "healthy" for state in components.values()) else "degraded"

        return HealthResponse(
            status=overall_status,
            version=__version__,
            components={
                **components,
                "model": config.GEMINI_MODEL,
                "stage_timeout_seconds": config.STAGE_TIMEOUT_SECONDS
            }
        )
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return HealthResponse(
            status="unhealthy",
            version=__version__,
            components={"error": str(e)}
        )

@app.post(
    "/analyze",
    response_model=AttributionResult,
    responses={
        415: {"model": ErrorResponse, "description": "Unsupported media type"},
        499: {"description": "Client closed request"},
        503: {"model": ErrorResponse, "description": "Dataset unavailable"},
    }
)
async def analyze_media(
    request: Request,
    file: UploadFile = File(..., description="Meme image to attribute")
):
    """
    Attribute an uploaded meme to its most likely creator.

    Supports JPEG, PNG, GIF and WebP images. The image is described, matched
    against the dataset of known posts, the closest match is selected and the
    attribution confidence is estimated, one model call per stage.
    """
    media_id = new_media_id()
    start_time = time.time()

    logger.info("Processing attribution request",
               media_id=media_id, filename=file.filename, content_type=file.content_type)

    content_type = validate_file(file)
    content = await file.read()
    if len(content) > config.MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File size exceeds maximum allowed size of {config.MAX_FILE_SIZE} bytes"
        )

    try:
        image_info = inspect_image(content)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logger.info("Upload validated",
               media_id=media_id,
               file_size=format_file_size(len(content)),
               content_hash=calculate_content_hash(content),
               **image_info)

    if attribution_pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Attribution pipeline is not initialized"
        )

    try:
        dataset = await run_in_threadpool(fetch_dataset)
    except Exception as e:
        logger.error("Dataset unavailable", media_id=media_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Dataset unavailable: {str(e)}"
        )

    payload = encode_media(content, content_type)
    try:
        result = await run_until_disconnected(
            request, attribution_pipeline.run(payload, dataset, run_id=media_id)
        )
    except ClientDisconnected:
        logger.warning("Client disconnected, attribution cancelled", media_id=media_id)
        raise HTTPException(status_code=HTTP_499_CLIENT_CLOSED_REQUEST, detail="Client closed request")
    except PipelineError as e:
        error = ErrorResponse(
            error="pipeline_failed",
            message=str(e),
            details={"stage": e.stage, "cause": str(e.cause)}
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error.model_dump()
        )

    logger.info("Attribution completed",
               media_id=media_id,
               final_match_id=result.final_match.id,
               match_percentage=result.match_result.percentage,
               processing_time_ms=int((time.time() - start_time) * 1000))
    return result

@app.get("/stats", response_model=dict)
async def get_system_stats():
    """Get dataset and service statistics."""
    try:
        db_stats = await run_in_threadpool(get_database_stats)

        return {
            "database": db_stats,
            "model": config.GEMINI_MODEL,
            "api_version": __version__,
            "timestamp": time.time()
        }
    except Exception as e:
        logger.error("Error retrieving system stats", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error retrieving stats: {str(e)}"
        )

# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error("Unhandled exception",
                url=str(request.url), method=request.method, error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_server_error", "message": "An unexpected error occurred"}
    )

if __name__ == "__main__":
    uvicorn.run(
        "memetrace.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.DEBUG,
        log_config=None,  # We handle logging with structlog
    )
