# ============================================================================
# School (Tenant) Model
# ============================================================================
from sqlalchemy import Column, String, Boolean, DateTime, Enum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
import uuid
import enum
from app.core.database import Base

class SubscriptionTier(str, enum.Enum):
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"
    TRIAL = "trial"

def enum_values(enum_cls):
    """Persist enum values rather than member names"""
    return [member.value for member in enum_cls]

class School(Base):
    __tablename__ = "schools"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(String(50), unique=True, nullable=False, index=True)
    school_name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    subscription_tier = Column(
        Enum(SubscriptionTier, values_callable=enum_values),
        default=SubscriptionTier.BASIC,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<School {self.school_id} ({self.school_name})>"
