"""
SQLAlchemy database models for saved contracts
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, stored as-is"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SavedContract(Base):
    """A contract saved by at least one user"""
    __tablename__ = "saved_contracts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    contract_id = Column(String(56), unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    users = relationship("UserSavedContract", back_populates="saved_contract", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<SavedContract(id={self.id}, contract_id='{self.contract_id}')>"


class UserSavedContract(Base):
    """A user's entry for a saved contract, with nickname and default flag"""
    __tablename__ = "user_saved_contracts"
    __table_args__ = (
        UniqueConstraint("user_id", "saved_contract_id", name="uq_user_saved_contract"),
        Index("ix_user_saved_contracts_user_default", "user_id", "is_default"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    saved_contract_id = Column(Integer, ForeignKey("saved_contracts.id", ondelete="CASCADE"), nullable=False)
    nickname = Column(String(100), nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    saved_contract = relationship("SavedContract", back_populates="users", lazy="joined")

    @property
    def contract_id(self) -> str:
        return self.saved_contract.contract_id

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "contractId": self.contract_id,
            "nickname": self.nickname,
            "isDefault": self.is_default,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<UserSavedContract(id={self.id}, user_id='{self.user_id}', default={self.is_default})>"
