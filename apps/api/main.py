from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import asyncio
import os
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Settings load the .env file FIRST
from config import get_settings

from database import create_db_and_tables
import models  # Import models to register them with SQLModel
from routers import auth, doctors, patients, chat, notifications, realtime
from middleware.request_logger import RequestLoggingMiddleware
from services.notification_service import notification_dispatcher, run_outbox_sweeper
from slowapi.errors import RateLimitExceeded
from slowapi import _rate_limit_exceeded_handler

settings = get_settings()

@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()

    sweeper = None
    if settings.outbox_sweep_interval > 0:
        sweeper = asyncio.create_task(
            run_outbox_sweeper(notification_dispatcher, settings.outbox_sweep_interval)
        )

    yield

    if sweeper:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass

app = FastAPI(
    title="Clinic API",
    description="Scheduling, chat and notifications for doctors and patients",
    version="0.1.0",
    lifespan=lifespan
)

# Set up rate limiter
app.state.limiter = auth.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    content = {"detail": "Internal server error"}
    if settings.debug:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)

# CORS configuration
origins = [
    settings.frontend_url,
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "Accept", "Origin"],
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)

# Include routers
app.include_router(auth.router)
app.include_router(doctors.router)
app.include_router(patients.router)
app.include_router(chat.router)
app.include_router(notifications.router)
app.include_router(realtime.router)

# Chat attachments
os.makedirs(settings.upload_dir, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")

@app.get("/")
def read_root():
    return {"message": "Welcome to the Clinic API"}

@app.get("/health")
def health_check():
    return {"status": "healthy"}
