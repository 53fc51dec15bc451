from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import subscription, properties, units, admin_subscriptions
from services.subscription_service import SubscriptionChangeError
from services.usage_resolver import AccountNotFoundError

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting PropertyDesk API")
    if os.environ.get("PYTEST_RUNNING"):
        logger.info("PYTEST_RUNNING set; skipping MongoDB connect")
        yield
        return

    await database.connect()

    yield

    # Shutdown
    logger.info("Shutting down PropertyDesk API")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="PropertyDesk API",
    description="Property management with plan-based usage enforcement",
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
app.include_router(subscription.router)
app.include_router(properties.router)
app.include_router(units.router)
app.include_router(admin_subscriptions.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "PropertyDesk",
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

# Validation error handler: log request_id + errors (loc path)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(errors), "request_id": request_id},
    )


@app.exception_handler(AccountNotFoundError)
async def account_not_found_handler(request: Request, exc: AccountNotFoundError):
    logger.warning(f"Account not found: {exc.account_id} path={request.url.path}")
    return JSONResponse(
        status_code=404,
        content={"success": False, "error": "Account not found"}
    )


@app.exception_handler(SubscriptionChangeError)
async def subscription_change_handler(request: Request, exc: SubscriptionChangeError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "details": exc.details}
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
