from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from imaginify.models.base import Base

class Image(Base):
    __tablename__ = 'images'
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    public_id = Column(String, nullable=False, index=True)  # Cloudinary asset ID
    transformation_type = Column(String, nullable=False)  # restore, fill, remove, recolor, removeBackground
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    config = Column(JSON, nullable=True)
    secure_url = Column(String, nullable=False)
    transformation_url = Column(String, nullable=True)
    aspect_ratio = Column(String, nullable=True)
    prompt = Column(String, nullable=True)
    color = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), index=True)

    author = relationship("User", back_populates="images")
