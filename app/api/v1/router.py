# ============================================================================
# Main API Router
# ============================================================================
from fastapi import APIRouter

from app.api.v1 import platform

api_router = APIRouter()

# Cross-school metrics, comparisons, trends, KPIs and cache maintenance
api_router.include_router(platform.router)
