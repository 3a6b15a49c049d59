from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from imaginify.models.base import Base
from imaginify.billing.plans import FREE_PLAN_ID, PLANS

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(String, unique=True, index=True, nullable=False)  # identity provider subject
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    photo = Column(String, nullable=True)

    plan_id = Column(Integer, default=FREE_PLAN_ID)
    # No floor: balance may go negative.
    credit_balance = Column(Integer, default=PLANS[FREE_PLAN_ID].credits, nullable=False)

    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    images = relationship("Image", back_populates="author", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="buyer")
