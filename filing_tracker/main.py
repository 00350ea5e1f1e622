"""
Filing Tracker - Main FastAPI Application
Compliance workflow engine for VAT returns and annual accounts
"""

import logging
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from filing_tracker.api.v1.api import api_router
from filing_tracker.core.config import settings
from filing_tracker.core.exceptions import (
    ConcurrentModificationError,
    DuplicatePeriodError,
    InvalidTransitionError,
    InvalidWorkflowRequestError,
    RepositoryError,
    UnknownStageError,
    WorkflowError,
    WorkflowNotFoundError,
)
from filing_tracker.core.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from filing_tracker.db.database import health_check as database_health_check

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Filing Tracker API",
    description="Compliance workflow engine for VAT returns and annual accounts",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
    debug=settings.DEBUG,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware)

_STATUS_BY_ERROR = (
    (WorkflowNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (DuplicatePeriodError, status.HTTP_409_CONFLICT),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
    (UnknownStageError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidWorkflowRequestError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RepositoryError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error(f"Workflow error - Request ID: {getattr(request.state, 'request_id', 'N/A')}, Error: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Include API routes
app.include_router(api_router, prefix="/v1")


@app.get("/health")
async def health_check():
    """Health check for load balancers; reports the database as well"""
    db_ok, db_message = database_health_check()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "filing-tracker",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "database": db_message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Filing Tracker API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    uvicorn.run(
        "filing_tracker.main:app",
        host="0.0.0.0",  # nosec B104
        port=8000,
        reload=settings.ENVIRONMENT == "development",
    )
