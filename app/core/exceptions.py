# ============================================================================
# Custom Exceptions
# ============================================================================
from typing import Optional

class EduConnectException(Exception):
    """Base exception for the EduConnect platform analytics engine"""
    def __init__(
        self,
        detail: str,
        status_code: int = 400,
        error_code: Optional[str] = None
    ):
        self.detail = detail
        self.status_code = status_code
        self.error_code = error_code or "EDUCONNECT_ERROR"
        super().__init__(self.detail)

class InvalidMetric(EduConnectException):
    def __init__(self, metric: str):
        super().__init__(
            detail=f"Unsupported metric type: {metric}",
            status_code=400,
            error_code="INVALID_METRIC"
        )
        self.metric = metric

class InvalidTrendRequest(EduConnectException):
    def __init__(self, message: str):
        super().__init__(
            detail=message,
            status_code=400,
            error_code="INVALID_TREND_REQUEST"
        )

class NoTenantsAvailable(EduConnectException):
    def __init__(self, message: str = "No active schools found for comparison"):
        super().__init__(
            detail=message,
            status_code=404,
            error_code="NO_TENANTS_AVAILABLE"
        )

class CollaboratorFailure(EduConnectException):
    """A data store call failed; never retried inside the engine"""
    def __init__(self, collaborator: str, reason: str):
        super().__init__(
            detail=f"{collaborator} query failed: {reason}",
            status_code=503,
            error_code="COLLABORATOR_FAILURE"
        )
        self.collaborator = collaborator

class CacheFailure(EduConnectException):
    """Raised by cache backends; the engine degrades to a cache miss"""
    def __init__(self, operation: str, reason: str):
        super().__init__(
            detail=f"Cache {operation} failed: {reason}",
            status_code=503,
            error_code="CACHE_FAILURE"
        )
        self.operation = operation
