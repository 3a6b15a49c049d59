from fastapi import FastAPI, Depends, HTTPException, status, Request, Query, UploadFile, File, Body
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse, JSONResponse
from fastapi.routing import APIRouter
from contextlib import asynccontextmanager
from sqlalchemy.orm import Session
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict
import logging
from typing import Optional, List
from starlette.middleware.sessions import SessionMiddleware

import stripe

# Config and errors
from imaginify import __version__
from imaginify.config import Settings, get_settings
from imaginify.errors import AppError, NotFoundError, UnauthorizedError, ValidationFailure

# Database
from imaginify.database import Database, get_db

# Authentication and security
from imaginify.auth.security import (
    SignInRequired,
    create_access_token,
    get_current_user,
    get_session_token,
    get_settings_from_app,
    require_admin,
    require_session_user,
)
from imaginify.auth.google_oauth import build_oauth

# Models
from imaginify.models.user import User
from imaginify.models.schemas import (
    CheckoutRequest,
    ImageCreate,
    ImageOut,
    ImagePage,
    ImageUpdate,
    TransactionOut,
    UploadedAsset,
    UserCreate,
    UserOut,
    UserUpdate,
)

# Services
from imaginify.services.cloudinary_service import CloudinaryService, get_cloudinary
from imaginify.services.redis_service import RedisService, get_redis

# Data access
from imaginify.actions import images as image_actions
from imaginify.actions import users as user_actions
from imaginify.actions import transactions as transaction_actions

# Billing
from imaginify.billing.plans import PLANS, FREE_PLAN_ID, insufficient_credits

# Forms and transformations
from imaginify.forms.session import FormAction, FormSessionRegistry
from imaginify.transformations.constants import (
    ASPECT_RATIO_OPTIONS,
    DEFAULT_FORM_VALUES,
    TRANSFORMATION_TYPES,
    TransformationType,
)

# Setup Logger
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("imaginify")


# Lifespan events to handle startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Imaginify starting up...")
    settings: Settings = app.state.settings
    settings.validate_required()

    app.state.db.connect()
    app.state.db.create_all()
    logger.info("✅ Database tables created")

    app.state.redis.connect()
    if not app.state.redis.available:
        logger.warning("⚠️ Redis unavailable. Token blacklisting will not work.")

    yield

    logger.info("🛑 Imaginify shutting down...")
    app.state.forms.close()
    app.state.redis.close()
    app.state.db.dispose()


def get_forms(request: Request) -> FormSessionRegistry:
    return request.app.state.forms


# API Routers
auth_router = APIRouter(tags=["Authentication"])
pages_router = APIRouter(prefix="/transformations", tags=["Transformations"])
images_router = APIRouter(prefix="/api/images", tags=["Images"])
account_router = APIRouter(tags=["Account"])
admin_router = APIRouter(prefix="/admin", tags=["Admin"])
transactions_router = APIRouter(prefix="/api/transactions", tags=["Transactions"])
health_router = APIRouter(prefix="/health", tags=["Health"])

# =============================================================================
# AUTHENTICATION ROUTES
# =============================================================================

@auth_router.get("/sign-in")
def sign_in(error: Optional[str] = None):
    """Where unauthenticated page requests are sent"""
    return {"message": "Sign in to continue", "login_url": "/auth/google/login", "error": error}

@auth_router.get("/auth/google/login")
async def google_login(request: Request):
    """Initiate Google OAuth login"""
    redirect_uri = request.url_for("google_callback")
    return await request.app.state.oauth.google.authorize_redirect(request, redirect_uri)

@auth_router.get("/auth/google/callback")
async def google_callback(request: Request, db: Session = Depends(get_db)):
    """Handle Google OAuth callback"""
    settings: Settings = request.app.state.settings
    try:
        token = await request.app.state.oauth.google.authorize_access_token(request)
        user_info = token.get("userinfo")
        if not user_info:
            raise HTTPException(status_code=400, detail="Failed to get user info from Google")

        try:
            user = user_actions.get_user_by_provider_id(db, user_info["sub"])
        except NotFoundError:
            user = user_actions.create_user(db, UserCreate(
                provider_id=user_info["sub"],
                email=user_info["email"],
                username=user_info.get("name") or user_info["email"].split("@")[0],
                first_name=user_info.get("given_name"),
                last_name=user_info.get("family_name"),
                photo=user_info.get("picture"),
            ))

        access_token = create_access_token(settings, data={"sub": str(user.id)})
        response = RedirectResponse(url="/")
        response.set_cookie(
            settings.session_cookie_name,
            access_token,
            max_age=settings.access_token_expire_minutes * 60,
            httponly=True,
            secure=settings.secure_cookies,
            samesite="lax",
        )
        return response

    except Exception as e:
        logger.error(f"Google callback error: {e}")
        return RedirectResponse(url=f"{settings.sign_in_path}?error=auth_failed")

@auth_router.post("/auth/logout")
def logout(
    current_user: User = Depends(get_current_user),
    token: str = Depends(get_session_token),
    redis_service: RedisService = Depends(get_redis),
    settings: Settings = Depends(get_settings_from_app),
):
    """Logout user and blacklist current token"""
    success = redis_service.blacklist_token(token, settings.access_token_expire_minutes)
    body = {"ok": True, "message": "Successfully logged out", "user_id": current_user.id}
    if not success:
        body.update(message="Logged out (client-side only)", warning="Server-side token invalidation unavailable")
    response = JSONResponse(body)
    response.delete_cookie(settings.session_cookie_name)
    return response

@auth_router.post("/auth/logout-all-devices")
def logout_all_devices(current_user: User = Depends(get_current_user), redis_service: RedisService = Depends(get_redis)):
    """Logout user from all devices"""
    if not redis_service.blacklist_all_user_tokens(str(current_user.id)):
        raise HTTPException(status_code=503, detail="Failed to logout from all devices")
    return {"ok": True, "message": "Successfully logged out from all devices", "user_id": current_user.id}

# =============================================================================
# TRANSFORMATION PAGES
# =============================================================================

def _transformation_or_404(type_: str) -> dict:
    try:
        return TRANSFORMATION_TYPES[TransformationType(type_)]
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown transformation type: {type_}")

def _page_context(transformation: dict, user: User, settings: Settings) -> dict:
    return {
        "title": transformation["title"],
        "subtitle": transformation["subtitle"],
        "type": transformation["type"],
        "user_id": user.id,
        "credit_balance": user.credit_balance,
        "insufficient_credits": insufficient_credits(user.credit_balance, settings.credit_fee),
        "aspect_ratio_options": ASPECT_RATIO_OPTIONS if transformation["type"] == TransformationType.FILL.value else None,
    }

class FormSessionStart(BaseModel):
    type: Optional[str] = None
    action: FormAction = FormAction.ADD
    image_id: Optional[int] = None

class FormFieldChanges(BaseModel):
    title: Optional[str] = None
    aspect_ratio: Optional[str] = None
    prompt: Optional[str] = None
    color: Optional[str] = None

class FormSubmitValues(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None

# Form session routes are async so the input timers run on the server loop.

@pages_router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def start_form_session(
    body: FormSessionStart,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    forms: FormSessionRegistry = Depends(get_forms),
):
    data = None
    type_ = body.type
    if body.action is FormAction.UPDATE:
        if body.image_id is None:
            raise ValidationFailure("image_id is required to update a transformation")
        data = image_actions.get_image_by_id(db, body.image_id)
        if data.author_id != current_user.id:
            raise UnauthorizedError("Unauthorized or image not found")
        type_ = data.transformation_type
    if type_ is None:
        raise ValidationFailure("type is required")
    session = forms.create(current_user.id, type_, current_user.credit_balance, action=body.action, data=data)
    logger.info(f"Form session {session.id} started: {session.action.value} {session.type.value} by user {current_user.id}")
    return session.to_dict()

@pages_router.get("/sessions/{session_id}")
async def get_form_session(session_id: str, current_user: User = Depends(get_current_user), forms: FormSessionRegistry = Depends(get_forms)):
    return forms.get(session_id, current_user.id).to_dict()

@pages_router.post("/sessions/{session_id}/media")
async def set_form_media(
    session_id: str,
    asset: UploadedAsset,
    current_user: User = Depends(get_current_user),
    forms: FormSessionRegistry = Depends(get_forms),
):
    """Receive the upload widget's result"""
    session = forms.get(session_id, current_user.id)
    session.set_image(asset)
    return session.to_dict()

@pages_router.post("/sessions/{session_id}/media/upload")
async def upload_form_media(
    session_id: str,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    forms: FormSessionRegistry = Depends(get_forms),
    cloudinary: CloudinaryService = Depends(get_cloudinary),
):
    session = forms.get(session_id, current_user.id)
    asset = await _upload(file, current_user, cloudinary)
    session.set_image(asset)
    return session.to_dict()

@pages_router.patch("/sessions/{session_id}/fields")
async def change_form_fields(
    session_id: str,
    changes: FormFieldChanges,
    current_user: User = Depends(get_current_user),
    forms: FormSessionRegistry = Depends(get_forms),
):
    session = forms.get(session_id, current_user.id)
    session.update_fields(changes.model_dump(exclude_none=True))
    return session.to_dict()

@pages_router.post("/sessions/{session_id}/apply")
async def apply_form_transformation(
    session_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    forms: FormSessionRegistry = Depends(get_forms),
    cloudinary: CloudinaryService = Depends(get_cloudinary),
):
    session = forms.get(session_id, current_user.id)
    session.apply(db, cloudinary)
    return session.to_dict()

@pages_router.post("/sessions/{session_id}/submit")
async def submit_form(
    session_id: str,
    values: Optional[FormSubmitValues] = Body(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    forms: FormSessionRegistry = Depends(get_forms),
    cloudinary: CloudinaryService = Depends(get_cloudinary),
):
    session = forms.get(session_id, current_user.id)
    record = session.submit(db, cloudinary, values.model_dump(exclude_none=True) if values else None)
    body = {
        "image": ImageOut.model_validate(record).model_dump(mode="json"),
        "redirect": f"/transformations/{record.id}",
        "session": session.to_dict(),
    }
    # An Add form starts over for the next image; an Update form is done
    if session.action is FormAction.UPDATE:
        forms.discard(session_id, current_user.id)
    return body

@pages_router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_form_session(session_id: str, current_user: User = Depends(get_current_user), forms: FormSessionRegistry = Depends(get_forms)):
    forms.discard(session_id, current_user.id)

@pages_router.get("/add/{type_}")
def add_transformation_page(
    type_: str,
    current_user: User = Depends(require_session_user),
    settings: Settings = Depends(get_settings_from_app),
):
    transformation = _transformation_or_404(type_)
    return {
        **_page_context(transformation, current_user, settings),
        "action": FormAction.ADD.value,
        "form_defaults": DEFAULT_FORM_VALUES,
    }

@pages_router.get("/{image_id}/update")
def update_transformation_page(
    image_id: int,
    current_user: User = Depends(require_session_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings_from_app),
):
    try:
        image = image_actions.get_image_by_id(db, image_id)
    except NotFoundError:
        return RedirectResponse(url="/")
    if image.author_id != current_user.id:
        raise UnauthorizedError("Unauthorized or image not found")
    try:
        transformation = TRANSFORMATION_TYPES[TransformationType(image.transformation_type)]
    except ValueError:
        return RedirectResponse(url="/")

    return {
        **_page_context(transformation, current_user, settings),
        "action": FormAction.UPDATE.value,
        "config": image.config or {},
        "data": ImageOut.model_validate(image).model_dump(mode="json"),
    }

@pages_router.get("/{image_id}")
def transformation_detail_page(image_id: int, current_user: User = Depends(require_session_user), db: Session = Depends(get_db)):
    image = image_actions.get_image_by_id(db, image_id)
    return {
        "image": ImageOut.model_validate(image).model_dump(mode="json"),
        "is_owner": image.author_id == current_user.id,
    }

# =============================================================================
# IMAGES ROUTES
# =============================================================================

async def _upload(file: UploadFile, current_user: User, cloudinary: CloudinaryService) -> UploadedAsset:
    logger.info(f"Upload Request - User: {current_user.email}, File: {file.filename}, Content-Type: {file.content_type}")
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail=f"File must be an image. Received: {file.content_type}")

    file_content = await file.read()
    if len(file_content) == 0:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    return cloudinary.upload_image(
        file_content,
        public_id=f"user_{current_user.id}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}",
    )

@images_router.get("", response_model=ImagePage)
def list_images(
    db: Session = Depends(get_db),
    cloudinary: CloudinaryService = Depends(get_cloudinary),
    page: int = Query(1, ge=1),
    limit: int = Query(9, ge=1, le=100),
    query: str = Query(""),
):
    """All images, newest first, optionally filtered by a provider search"""
    return image_actions.get_all_images(db, cloudinary, limit=limit, page=page, search_query=query)

@images_router.get("/mine", response_model=ImagePage)
def list_my_images(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    page: int = Query(1, ge=1),
    limit: int = Query(9, ge=1, le=100),
):
    return image_actions.get_user_images(db, current_user.id, limit=limit, page=page)

@images_router.post("/upload", response_model=UploadedAsset)
async def upload_image(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    cloudinary: CloudinaryService = Depends(get_cloudinary),
):
    """Upload an image file and return the asset details"""
    return await _upload(file, current_user, cloudinary)

@images_router.get("/{image_id}", response_model=ImageOut)
def get_image(image_id: int, db: Session = Depends(get_db)):
    return image_actions.get_image_by_id(db, image_id)

@images_router.post("", response_model=ImageOut, status_code=status.HTTP_201_CREATED)
def create_image(image: ImageCreate, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return image_actions.add_image(db, image, current_user.id)

@images_router.put("/{image_id}", response_model=ImageOut)
def update_image(
    image_id: int,
    image: ImageUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return image_actions.update_image(db, image_id, image, current_user.id)

@images_router.delete("/{image_id}")
def delete_image(
    image_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cloudinary: CloudinaryService = Depends(get_cloudinary),
):
    image_actions.delete_image(db, image_id, current_user.id, cloudinary)
    return {"message": "Image deleted successfully", "redirect": "/"}

# =============================================================================
# USER / ACCOUNT ROUTES
# =============================================================================

@account_router.get("/users/me", response_model=UserOut)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return current_user

@account_router.put("/users/me", response_model=UserOut)
def update_current_user(changes: UserUpdate, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return user_actions.update_user(db, current_user.id, changes)

@account_router.get("/account/credits")
def get_user_credits(current_user: User = Depends(get_current_user), settings: Settings = Depends(get_settings_from_app)):
    plan = PLANS.get(current_user.plan_id, PLANS[FREE_PLAN_ID])
    return {
        "credit_balance": current_user.credit_balance,
        "plan_id": current_user.plan_id,
        "plan_name": plan.name,
        "credit_fee": settings.credit_fee,
        "insufficient_credits": insufficient_credits(current_user.credit_balance, settings.credit_fee),
    }

# =====================================================================
# ADMIN ROUTES
# =====================================================================

@admin_router.get("/users", response_model=List[UserOut])
def get_all_users(admin_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    return db.query(User).order_by(User.id).all()

@admin_router.post("/users/{user_id}/credits", response_model=UserOut)
def adjust_user_credits(
    user_id: int,
    amount: int = Query(..., description="Signed number of credits to add"),
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = user_actions.update_credits(db, user_id, amount)
    logger.info(f"Admin {admin_user.id} adjusted credits of user {user_id} by {amount}")
    return user

@admin_router.post("/users/{user_id}/status", response_model=UserOut)
def update_user_status(
    user_id: int,
    is_active: bool = Query(...),
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = user_actions.get_user_by_id(db, user_id)
    user.is_active = is_active
    db.commit()
    db.refresh(user)
    return user

@admin_router.post("/users/{user_id}/logout-force")
def force_logout_user(user_id: int, admin_user: User = Depends(require_admin), redis_service: RedisService = Depends(get_redis)):
    if not redis_service.blacklist_all_user_tokens(str(user_id)):
        raise HTTPException(status_code=503, detail="Failed to logout user")
    return {"message": f"User {user_id} logged out from all devices"}

@admin_router.delete("/users/{user_id}")
def delete_user(user_id: int, admin_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    user_actions.delete_user(db, user_id)
    return {"message": f"User {user_id} deleted"}

# =====================================================================
# TRANSACTION ROUTES
# =====================================================================

@transactions_router.get("/plans")
def list_plans():
    return [
        {"id": plan_id, "name": plan.name, "price": plan.price, "credits": plan.credits}
        for plan_id, plan in PLANS.items()
    ]

@transactions_router.post("/checkout")
def checkout(
    body: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings_from_app),
):
    url = transaction_actions.checkout_credits(settings, body.plan_id, current_user)
    return {"url": url}

@transactions_router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Stripe webhook events"""
    settings: Settings = request.app.state.settings
    if not settings.stripe_webhook_secret:
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")
    try:
        event = stripe.Webhook.construct_event(payload, sig_header, settings.stripe_webhook_secret)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    if event["type"] != "checkout.session.completed":
        return {"received": True}

    transaction = transaction_actions.create_transaction(
        db, transaction_actions.transaction_from_checkout(event["data"]["object"])
    )
    return {"received": True, "transaction": TransactionOut.model_validate(transaction).model_dump(mode="json")}

@transactions_router.get("", response_model=List[TransactionOut])
def list_my_transactions(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return transaction_actions.get_user_transactions(db, current_user.id)

# =====================================================================
# HEALTH ROUTES
# =====================================================================

@health_router.get("/redis")
def redis_health(redis_service: RedisService = Depends(get_redis)):
    if redis_service.ping():
        return {"status": "healthy", "redis": "connected"}
    return {"status": "unhealthy", "redis": "disconnected"}

@health_router.get("/db")
def database_health(request: Request):
    if request.app.state.db.ping():
        return {"status": "healthy", "database": "connected"}
    return {"status": "unhealthy", "database": "disconnected"}

@health_router.get("/cloudinary")
def cloudinary_health(cloudinary: CloudinaryService = Depends(get_cloudinary)):
    if cloudinary.ping():
        return {"status": "healthy", "cloudinary": "connected"}
    return {"status": "unhealthy", "cloudinary": "disconnected"}

@health_router.get("/")
def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
    }

# =========================
# ERROR HANDLERS
# =========================

async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

async def sign_in_required_handler(request: Request, exc: SignInRequired):
    logger.info(f"Redirecting to sign-in from {request.url.path}: {exc.reason}")
    return RedirectResponse(url=request.app.state.settings.sign_in_path)

async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Internal Server Error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_SERVER_ERROR", "detail": "An unexpected error occurred."},
    )


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    cloudinary: Optional[CloudinaryService] = None,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Imaginify API",
        description="AI image transformation service with credit billing",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db = database or Database(settings.patched_database_url)
    app.state.redis = RedisService(settings.redis_url, settings.access_token_expire_minutes)
    app.state.cloudinary = cloudinary or CloudinaryService(settings)
    app.state.oauth = build_oauth(settings)
    app.state.forms = FormSessionRegistry(settings.debounce_seconds, settings.credit_fee, settings.form_session_ttl_seconds)

    # Session middleware holds the OAuth state between login and callback
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key or "unset",
        max_age=60 * 60 * 24 * 7,  # 1 week
        same_site="lax",
        https_only=settings.secure_cookies,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )

    # Register all routers
    app.include_router(auth_router)
    app.include_router(pages_router)
    app.include_router(images_router)
    app.include_router(account_router)
    app.include_router(admin_router)
    app.include_router(transactions_router)
    app.include_router(health_router)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(SignInRequired, sign_in_required_handler)
    app.add_exception_handler(Exception, internal_error_handler)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "imaginify.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=False,  # Disable reload for production
        log_level="info",
    )
