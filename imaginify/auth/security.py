from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from sqlalchemy.orm import Session
from imaginify.config import Settings
from imaginify.database import get_db
from imaginify.models.user import User
from imaginify.services.redis_service import RedisService, get_redis

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/google/login", auto_error=False)


class SignInRequired(Exception):
    """Raised by page routes when there is no usable session."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def get_settings_from_app(request: Request) -> Settings:
    return request.app.state.settings


def create_access_token(settings: Settings, data: dict, expires_minutes: Optional[int] = None) -> str:
    """Create JWT with issued at timestamp"""
    now = datetime.now(timezone.utc)
    expire = now + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    to_encode = {
        **data,
        "exp": expire,
        "iat": now,  # Add issued at timestamp
        "nbf": now   # Not before timestamp
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def get_session_token(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings_from_app),
) -> Optional[str]:
    """Bearer header first, then the session cookie"""
    return bearer or request.cookies.get(settings.session_cookie_name)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def resolve_user(token: Optional[str], db: Session, redis_service: RedisService, settings: Settings) -> User:
    """Load the user a session token belongs to, or raise 401/403"""
    if not token:
        raise _unauthorized("Not authenticated")

    # Check if token is blacklisted
    if redis_service.is_token_blacklisted(token):
        raise _unauthorized("Token has been invalidated")

    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        user_id = payload.get("sub")
        issued_at = payload.get("iat")
        if not user_id:
            raise _unauthorized("Invalid token payload")
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except JWTError:
        raise _unauthorized("Could not validate credentials")

    try:
        user = db.get(User, int(user_id))
    except ValueError:
        raise _unauthorized("Invalid token payload")
    if not user:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User inactive",
        )

    # Invalidate if user performed "logout from all devices" after this token was issued
    if issued_at:
        user_logout_time = redis_service.get_user_logout_time(str(user.id))
        if user_logout_time:
            token_issued_time = datetime.fromtimestamp(issued_at, tz=timezone.utc)
            if user_logout_time > token_issued_time:
                raise _unauthorized("Token invalidated due to security logout")

    return user


def get_current_user(
    token: Optional[str] = Depends(get_session_token),
    db: Session = Depends(get_db),
    redis_service: RedisService = Depends(get_redis),
    settings: Settings = Depends(get_settings_from_app),
) -> User:
    """Get current authenticated user from JWT token with blacklist check"""
    return resolve_user(token, db, redis_service, settings)


def require_session_user(
    token: Optional[str] = Depends(get_session_token),
    db: Session = Depends(get_db),
    redis_service: RedisService = Depends(get_redis),
    settings: Settings = Depends(get_settings_from_app),
) -> User:
    """Like ``get_current_user`` but sends the browser to sign in instead of failing"""
    try:
        return resolve_user(token, db, redis_service, settings)
    except HTTPException as e:
        if e.status_code == status.HTTP_401_UNAUTHORIZED:
            raise SignInRequired(e.detail) from e
        raise


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user
