import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

# Loads the .env file so os.getenv can find DATABASE_URL and the JWT secrets
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return int(value)


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read once from the environment at startup."""

    database_url: str
    jwt_secret: str
    refresh_token_secret: str
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    # None keeps refresh tokens expiry-free; rotation and logout revoke them instead
    refresh_token_expire_days: Optional[int] = None
    cors_origins: List[str] = field(default_factory=list)
    cloudinary_url: Optional[str] = None
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    media_root: str = "media"
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def cloudinary_enabled(self) -> bool:
        if self.cloudinary_url:
            return True
        return all(
            (self.cloudinary_cloud_name, self.cloudinary_api_key, self.cloudinary_api_secret)
        )

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL")
        if database_url is None:
            raise ValueError("DATABASE_URL is not set in the environment. Please create a .env file.")

        jwt_secret = os.getenv("JWT_SECRET")
        refresh_secret = os.getenv("REFRESH_TOKEN_SECRET")
        if not jwt_secret or not refresh_secret:
            raise ValueError("JWT_SECRET and REFRESH_TOKEN_SECRET must both be set.")
        if jwt_secret == refresh_secret:
            raise ValueError("JWT_SECRET and REFRESH_TOKEN_SECRET must differ.")

        origins = os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000",
        )

        return cls(
            database_url=database_url,
            jwt_secret=jwt_secret,
            refresh_token_secret=refresh_secret,
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            access_token_expire_minutes=_env_int("ACCESS_TOKEN_EXPIRE_MINUTES") or 15,
            refresh_token_expire_days=_env_int("REFRESH_TOKEN_EXPIRE_DAYS"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            cloudinary_url=os.getenv("CLOUDINARY_URL") or None,
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME") or None,
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY") or None,
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET") or None,
            media_root=os.getenv("MEDIA_ROOT", "media"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LOG_JSON", True),
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()
