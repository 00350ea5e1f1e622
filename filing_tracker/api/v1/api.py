"""
API v1 Router Configuration
Aggregates all API endpoints for version 1
"""

from fastapi import APIRouter

from filing_tracker.api.v1.endpoints import workflow

# Create main API router
api_router = APIRouter()

api_router.include_router(workflow.router, prefix="/workflows", tags=["Filing Workflows"])
