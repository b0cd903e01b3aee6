from app.models.school import School, SubscriptionTier
from app.models.user import User, Student, UserRole
from app.models.monitoring import (
    PlatformAuditLog, SystemAlert, AlertAffectedSchool,
    OperationType, AlertType, AlertSeverity
)

__all__ = [
    "School", "SubscriptionTier", "User", "Student", "UserRole",
    "PlatformAuditLog", "SystemAlert", "AlertAffectedSchool",
    "OperationType", "AlertType", "AlertSeverity"
]
