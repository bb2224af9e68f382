"""
FastAPI application for the Patient Intake OCR workflow.
"""
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime
import logging

from intake.config import Config
from intake.deps import get_rate_limiter, init_services
from intake.models import HealthResponse, RateLimitStatus
from intake.routes import form_sessions, patient_forms, todos
from intake.utils.rate_limiter import RateLimiter

# Configure logging
logging.basicConfig(
    level=Config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Patient Intake OCR API",
    description="API for recognizing patient intake documents and storing the reviewed forms",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(form_sessions.router)
app.include_router(patient_forms.router)
app.include_router(todos.router)


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    try:
        Config.validate()
        logger.info("Configuration validated successfully")

        init_services()
        logger.info("Services initialized successfully")
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now()
    )


@app.get("/api/rate-limit", response_model=RateLimitStatus)
async def get_rate_limit_status(rate_limiter: RateLimiter = Depends(get_rate_limiter)):
    """Get current OCR provider rate limit status."""
    stats = rate_limiter.get_stats()
    return RateLimitStatus(
        total_calls=stats['total_calls'],
        max_calls=stats['max_calls'],
        remaining_calls=stats['remaining_calls'],
        calls_by_service=stats['calls_by_service']
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "intake.main:app",
        host=Config.API_HOST,
        port=Config.API_PORT,
        reload=True
    )
