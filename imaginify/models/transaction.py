from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Float
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from imaginify.models.base import Base

class Transaction(Base):
    __tablename__ = 'transactions'
    id = Column(Integer, primary_key=True, index=True)
    stripe_id = Column(String, unique=True, nullable=False)
    amount = Column(Float, nullable=False)
    plan = Column(String, nullable=True)
    credits = Column(Integer, nullable=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    buyer = relationship("User", back_populates="transactions")
