# ============================================================================
# Platform Audit Log & System Alert Models
# ============================================================================
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Enum, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
import enum
from app.core.database import Base
from app.models.school import enum_values

class OperationType(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    ADMIN_ACTION = "admin_action"
    SYSTEM_CONFIG = "system_config"
    CROSS_SCHOOL_ACCESS = "cross_school_access"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"

class AlertType(str, enum.Enum):
    SECURITY = "security"
    PERFORMANCE = "performance"
    ERROR = "error"
    MAINTENANCE = "maintenance"
    BILLING = "billing"
    COMPLIANCE = "compliance"
    SYSTEM_HEALTH = "system_health"

class AlertSeverity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

class PlatformAuditLog(Base):
    __tablename__ = "platform_audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    operation = Column(String(200), nullable=False)
    operation_type = Column(Enum(OperationType, values_callable=enum_values), nullable=False, index=True)
    user_email = Column(String(255), nullable=False)
    target_school_id = Column(String(50), nullable=True, index=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    def __repr__(self):
        return f"<PlatformAuditLog {self.operation} ({self.operation_type.value})>"

class SystemAlert(Base):
    __tablename__ = "system_alerts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    alert_type = Column(Enum(AlertType, values_callable=enum_values), nullable=False, index=True)
    severity = Column(Enum(AlertSeverity, values_callable=enum_values), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    is_resolved = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    affected_schools = relationship("AlertAffectedSchool", back_populates="alert", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<SystemAlert {self.title} ({self.severity.value})>"

class AlertAffectedSchool(Base):
    __tablename__ = "system_alert_schools"

    alert_id = Column(UUID(as_uuid=True), ForeignKey("system_alerts.id", ondelete="CASCADE"), primary_key=True)
    school_id = Column(String(50), primary_key=True, index=True)

    alert = relationship("SystemAlert", back_populates="affected_schools")
