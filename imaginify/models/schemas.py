from pydantic import BaseModel, ConfigDict, EmailStr, Field
from datetime import datetime
from typing import Optional, Dict, Any, List


class UserCreate(BaseModel):
    provider_id: str
    email: EmailStr
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    photo: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "provider_id": "google-oauth2|1234567890",
                "email": "name@mail.com",
                "username": "TonyStark",
                "first_name": "Tony",
                "last_name": "Stark",
                "photo": "https://example.com/tony.png",
            }
        }
    )


class UserUpdate(BaseModel):
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    photo: Optional[str] = None


class UserOut(BaseModel):
    id: int
    email: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    photo: Optional[str] = None
    credit_balance: int
    plan_id: int
    is_active: bool
    is_admin: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AuthorOut(BaseModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    provider_id: str

    model_config = ConfigDict(from_attributes=True)


class UploadedAsset(BaseModel):
    """What the upload widget hands back after a successful upload."""
    public_id: str
    width: int
    height: int
    secure_url: str


class ImageCreate(BaseModel):
    title: str
    public_id: str
    transformation_type: str
    width: Optional[int] = None
    height: Optional[int] = None
    config: Optional[Dict[str, Any]] = None
    secure_url: str
    transformation_url: Optional[str] = None
    aspect_ratio: Optional[str] = None
    prompt: Optional[str] = None
    color: Optional[str] = None


class ImageUpdate(BaseModel):
    title: Optional[str] = None
    public_id: Optional[str] = None
    transformation_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    config: Optional[Dict[str, Any]] = None
    secure_url: Optional[str] = None
    transformation_url: Optional[str] = None
    aspect_ratio: Optional[str] = None
    prompt: Optional[str] = None
    color: Optional[str] = None


class ImageOut(BaseModel):
    id: int
    title: str
    author_id: int
    author: Optional[AuthorOut] = None
    public_id: str
    transformation_type: str
    width: Optional[int] = None
    height: Optional[int] = None
    config: Optional[Dict[str, Any]] = None
    secure_url: str
    transformation_url: Optional[str] = None
    aspect_ratio: Optional[str] = None
    prompt: Optional[str] = None
    color: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ImagePage(BaseModel):
    data: List[ImageOut]
    total_pages: int
    saved_images: Optional[int] = None


class TransactionCreate(BaseModel):
    stripe_id: str
    amount: float
    credits: int
    plan: str
    buyer_id: int


class TransactionOut(BaseModel):
    id: int
    stripe_id: str
    amount: float
    plan: Optional[str] = None
    credits: Optional[int] = None
    buyer_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CheckoutRequest(BaseModel):
    plan_id: int = Field(..., ge=1)
