from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import analytics, clients, content, portal, proposals, questionnaires, templates, tracking, webhooks
from services.errors import ExternalServiceError, IncompleteRequired, NotFoundError, QuestionnaireClosed, ValidationError

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
    if os.getenv("PYTEST_RUNNING"):
        yield
        return

    logger.info("Starting Client Engagement API")
    await database.connect()

    stripe_key = (os.environ.get("STRIPE_SECRET_KEY") or os.environ.get("STRIPE_API_KEY") or "").strip()
    if not stripe_key:
        logger.error("STRIPE_API_KEY / STRIPE_SECRET_KEY is not set. Proposal checkout links will fail.")
    else:
        stripe_mode = "test" if stripe_key.startswith("sk_test_") else "live"
        logger.info("STRIPE_MODE = %s (from Stripe key prefix)", stripe_mode)

    yield

    logger.info("Shutting down Client Engagement API")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="Client Engagement API",
    description="Proposals, onboarding questionnaires, client portals and engagement analytics",
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
app.include_router(clients.router)
app.include_router(proposals.router)
app.include_router(proposals.services_router)
app.include_router(templates.router)
app.include_router(questionnaires.router)
app.include_router(questionnaires.instance_router)
app.include_router(content.router)
app.include_router(portal.router)
app.include_router(tracking.router)
app.include_router(analytics.router)
app.include_router(webhooks.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "Client Engagement API",
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


# ============================================================================
# Business error handlers
# ============================================================================

@app.exception_handler(QuestionnaireClosed)
async def questionnaire_closed_handler(request: Request, exc: QuestionnaireClosed):
    return JSONResponse(
        status_code=410,
        content={"detail": exc.message, "status": exc.status},
    )


@app.exception_handler(ValidationError)
async def business_validation_handler(request: Request, exc: ValidationError):
    content = {"detail": exc.message, "field": exc.field}
    if isinstance(exc, IncompleteRequired):
        content["missing_question_ids"] = exc.question_ids
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(ExternalServiceError)
async def external_service_handler(request: Request, exc: ExternalServiceError):
    logger.warning(f"External service failure ({exc.service}): {exc.message}")
    return JSONResponse(
        status_code=502,
        content={"detail": exc.message, "service": exc.service, "retryable": True},
    )


# Validation error handler: log request_id + full errors (loc path)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Request validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(errors), "request_id": request_id},
    )


def jsonable_errors(errors):
    # ctx may hold the raised exception object, which is not JSON serialisable
    return [{k: v for k, v in e.items() if k != "ctx"} for e in errors]


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
