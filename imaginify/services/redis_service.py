import redis
import json
import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import Request

logger = logging.getLogger(__name__)


class RedisService:
    def __init__(self, redis_url: Optional[str] = None, token_ttl_minutes: int = 60):
        self.redis_url = redis_url
        self.token_ttl_minutes = token_ttl_minutes
        self.redis_client = None

    def connect(self):
        if not self.redis_url:
            logger.warning("⚠️ No Redis URL provided")
            return
        try:
            self.redis_client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True
            )
            # Test connection
            self.redis_client.ping()
            logger.info("✅ Redis connected successfully")
        except redis.RedisError as e:
            logger.warning(f"⚠️ Redis connection failed: {e}")
            self.redis_client = None

    def close(self):
        if self.redis_client is not None:
            self.redis_client.close()
        self.redis_client = None

    @property
    def available(self) -> bool:
        return self.redis_client is not None

    def ping(self) -> bool:
        if not self.available:
            return False
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError:
            return False

    def blacklist_token(self, token: str, expires_in_minutes: Optional[int] = None) -> bool:
        """Add token to blacklist with expiration"""
        if not self.available:
            return False
        try:
            blacklist_data = {
                "blacklisted_at": datetime.now(timezone.utc).isoformat(),
                "reason": "user_logout"
            }
            expiry_seconds = (expires_in_minutes or self.token_ttl_minutes) * 60
            return bool(self.redis_client.setex(
                f"blacklist:{token}",
                expiry_seconds,
                json.dumps(blacklist_data)
            ))
        except redis.RedisError as e:
            logger.error(f"Redis blacklist error: {e}")
            return False

    def is_token_blacklisted(self, token: str) -> bool:
        """Check if token is blacklisted"""
        if not self.available:
            return False
        try:
            return self.redis_client.get(f"blacklist:{token}") is not None
        except redis.RedisError as e:
            logger.error(f"Redis blacklist check error: {e}")
            return False

    def blacklist_all_user_tokens(self, user_id: str) -> bool:
        """Invalidate every token issued to a user before now"""
        if not self.available:
            return False
        try:
            user_logout_data = {
                "logged_out_at": datetime.now(timezone.utc).isoformat(),
                "reason": "user_logout_all_devices"
            }
            expiry_seconds = 24 * 60 * 60  # 24 hours
            return bool(self.redis_client.setex(
                f"user_logout:{user_id}",
                expiry_seconds,
                json.dumps(user_logout_data)
            ))
        except redis.RedisError as e:
            logger.error(f"Redis user logout error: {e}")
            return False

    def get_user_logout_time(self, user_id: str) -> Optional[datetime]:
        """Get when user logged out from all devices"""
        if not self.available:
            return None
        try:
            result = self.redis_client.get(f"user_logout:{user_id}")
            if result:
                data = json.loads(result)
                return datetime.fromisoformat(data["logged_out_at"])
            return None
        except (redis.RedisError, ValueError, KeyError) as e:
            logger.error(f"Redis logout lookup error: {e}")
            return None


def get_redis(request: Request) -> RedisService:
    return request.app.state.redis
