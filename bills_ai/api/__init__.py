"""API router aggregation."""
from fastapi import APIRouter

from bills_ai.api.v1 import ai

api_router = APIRouter()
api_router.include_router(ai.router, prefix="/v1/ai", tags=["ai"])
