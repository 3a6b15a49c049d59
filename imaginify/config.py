# config.py
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from imaginify.errors import MissingConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def patched_database_url(self):
        if self.database_url and self.database_url.startswith("postgres://"):
            return self.database_url.replace("postgres://", "postgresql://", 1)
        return self.database_url

    secret_key: str = ""
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    session_cookie_name: str = "session"
    sign_in_path: str = "/sign-in"

    google_client_id: str = ""
    google_client_secret: str = ""

    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_folder: str = "imaginify"
    cloudinary_search_limit: int = 500

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    public_server_url: str = "http://localhost:3000"

    redis_url: Optional[str] = None
    database_url: Optional[str] = None

    allowed_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    secure_cookies: bool = True

    credit_fee: int = -1
    page_size: int = 9
    debounce_seconds: float = 1.0
    form_session_ttl_seconds: int = 1800

    def validate_required(self):
        required_vars = [
            "secret_key", "google_client_id", "google_client_secret",
            "cloudinary_cloud_name", "cloudinary_api_key", "cloudinary_api_secret", "database_url",
        ]
        missing = [var for var in required_vars if not getattr(self, var, None)]
        if missing:
            raise MissingConfigurationError(f"Missing required config: {', '.join(missing)}")


@lru_cache
def get_settings() -> Settings:
    return Settings()
