############################################################
#
# mathchat - Math-focused Chat Service
#
# __init__.py: API router aggregation and exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""API endpoints for MathChat."""

from fastapi import APIRouter

from backend.app.api.chat import router as chat_router
from backend.app.api.health import router as health_router

# Create main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(health_router)
api_router.include_router(chat_router)

__all__ = ["api_router"]
