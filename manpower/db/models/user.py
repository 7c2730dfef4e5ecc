"""
User Model - Workers, Businesses and Admins

Registration and login live in the identity service; this table mirrors the
fields the ledger needs (role and active flag) and anchors foreign keys.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Boolean
from sqlalchemy.orm import relationship

from manpower.db.database import Base
from manpower.db.types import utcnow


class UserRole(str, enum.Enum):
    WORKER = "worker"
    BUSINESS = "business"
    ADMIN = "admin"


class User(Base):
    """Marketplace user"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    role = Column(
        SQLEnum(UserRole, name="user_role", values_callable=lambda x: [e.value for e in x]),
        default=UserRole.WORKER,
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    wallet = relationship("WorkerWallet", back_populates="worker", uselist=False, lazy="noload")

    @property
    def is_worker(self) -> bool:
        return self.role == UserRole.WORKER

    @property
    def is_business(self) -> bool:
        return self.role == UserRole.BUSINESS

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
