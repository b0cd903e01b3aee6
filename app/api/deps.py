# ============================================================================
# API Dependencies
# ============================================================================
from fastapi import HTTPException, Request, status

from app.services.analytics import PlatformAnalyticsService


async def get_platform_service(request: Request) -> PlatformAnalyticsService:
    """
    Get the platform analytics service from app state.

    The service is built once at startup (cache layer plus SQL stores) and
    stored in app.state for reuse across requests.
    """
    service = getattr(request.app.state, "platform_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Platform analytics service not initialized"
        )
    return service
