from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import submissions, checkout, files, catalog, admin_jobs

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.jobstores.mongodb import MongoDBJobStore

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Scheduler with MongoDB job store so the nightly purge survives restarts
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
db_name = os.environ.get('DB_NAME', 'notary_express')

jobstores = {}
try:
    from pymongo import MongoClient
    mongo_client = MongoClient(mongo_url, connect=False)
    jobstores['default'] = MongoDBJobStore(
        database=db_name,
        collection='scheduled_jobs',
        client=mongo_client
    )
    logger.info(f"MongoDB job store configured: {db_name}.scheduled_jobs")
except Exception as e:
    logger.warning(f"Failed to configure MongoDB job store, using memory store: {e}")
    jobstores = {}

scheduler = AsyncIOScheduler(jobstores=jobstores)

from job_runner import run_retention_purge


def _retention_cron_hour() -> int:
    raw = os.environ.get("RETENTION_PURGE_CRON_HOUR", "3")
    try:
        hour = int(raw)
    except ValueError:
        logger.warning("RETENTION_PURGE_CRON_HOUR=%r is not an integer, using 3", raw)
        return 3
    return hour if 0 <= hour <= 23 else 3


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.environ.get("PYTEST_RUNNING"):
        yield
        return

    # Startup
    logger.info("Starting Notary Express API")
    await database.connect()

    # Stripe config: log mode (test/live) from key prefix, never the key itself
    stripe_key = (os.environ.get("STRIPE_SECRET_KEY") or "").strip()
    if not stripe_key:
        logger.error("STRIPE_SECRET_KEY is not set. Checkout sessions will fail with SERVER_MISCONFIGURED.")
    else:
        stripe_mode = "test" if stripe_key.startswith("sk_test_") else "live"
        logger.info("STRIPE_MODE = %s (from Stripe key prefix)", stripe_mode)

    if not (os.environ.get("NOTARY_TEAM_ID") or "").strip():
        logger.warning("NOTARY_TEAM_ID is not set. File access grants will fail.")

    # Nightly retention purge of notarized deliveries
    hour = _retention_cron_hour()
    scheduler.add_job(
        run_retention_purge,
        CronTrigger(hour=hour, minute=0),
        id="retention_purge",
        name="Notarized File Retention Purge",
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Background job scheduler started (retention purge at {hour:02d}:00 UTC)")

    yield

    # Shutdown
    logger.info("Shutting down Notary Express API")
    scheduler.shutdown(wait=False)
    logger.info("Background job scheduler stopped")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="Notary Express API",
    description="Notarization order intake, checkout and document delivery",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(catalog.router)
app.include_router(submissions.router)
app.include_router(checkout.router)
app.include_router(files.router)
app.include_router(files.notary_router)  # Notarized uploads (staff)
app.include_router(admin_jobs.router)  # Manual job runs (staff)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "Notary Express",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }

# Validation error handler: log request_id + loc paths for wizard step debugging
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    path = getattr(request, "url", None) and getattr(request.url, "path", "") or ""
    if "/steps/" in path or "checkout" in path:
        logger.warning(
            "Request validation failed request_id=%s path=%s errors=%s",
            request_id,
            path,
            [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
        )
    return JSONResponse(
        status_code=422,
        content={"detail": errors, "request_id": request_id},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
