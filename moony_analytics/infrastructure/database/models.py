"""SQLAlchemy ORM models for users and their spending analytics"""

import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class User(Base):
    """Account holder with an optional Plaid connection"""

    __tablename__ = "users"

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    first_name = Column(Text, nullable=False, default="")
    last_name = Column(Text, nullable=False, default="")
    plaid_item_id = Column(Text, nullable=True, index=True)
    plaid_access_token = Column(Text, nullable=True)  # Fernet-encrypted
    plaid_connected_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    spending_analytics = relationship(
        "UserSpendingAnalytics", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )


class UserSpendingAnalytics(Base):
    """Latest spending statistics snapshot, one row per user"""

    __tablename__ = "user_spending_analytics"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(Text, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    average_monthly_spending = Column(Numeric(10, 2), nullable=False)
    last_month_spending = Column(Numeric(10, 2), nullable=False)
    two_months_ago_spending = Column(Numeric(10, 2), nullable=True)
    current_month_spending = Column(Numeric(10, 2), nullable=False, default=0)
    last_calculated_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="spending_analytics")
