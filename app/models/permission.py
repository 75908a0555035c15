from sqlalchemy import Boolean, Column, Integer, String, DateTime, Enum, UniqueConstraint
from datetime import datetime
from app.db.base_class import Base
from app.models.user import UserRole


class RolePermission(Base):
    """Stored override of a role's default capability for one resource/action pair."""

    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role", "resource", "action", name="uq_role_permissions_role_resource_action"),
    )

    id = Column(Integer, primary_key=True, index=True)
    role = Column(Enum(UserRole), nullable=False, index=True)
    resource = Column(String(30), nullable=False)
    action = Column(String(10), nullable=False)
    allowed = Column(Boolean, nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
