"""
Runtime configuration for the Taskbox API.

Every value can be overridden from the environment (or a local .env file)
using the field name as the variable name, e.g. ``PORT=8080``.
"""
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "dev-secret-change-me"


class Settings(BaseSettings):
    # Project configuration
    PROJECT_NAME: str = "Taskbox API"
    VERSION: str = "0.2.0"
    API_PREFIX: str = "/api"
    ENVIRONMENT: str = "production"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # Filesystem layout
    APP_ROOT: Path = Path(".")
    DATA_DIR: Optional[Path] = None
    PUBLIC_DIR: Optional[Path] = None
    UPLOADS_DIR: Optional[Path] = None

    # JWT configuration
    SECRET_KEY: str = DEFAULT_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 7 * 24 * 60  # 7 days in minutes

    # Password hashing cost (bcrypt log2 rounds, 4..31)
    BCRYPT_ROUNDS: int = 8

    # Uploads
    MAX_UPLOAD_SIZE_MB: int = 25

    CORS_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def data_dir(self) -> Path:
        return self.DATA_DIR or self.APP_ROOT / "data"

    @property
    def public_dir(self) -> Path:
        return self.PUBLIC_DIR or self.APP_ROOT / "public"

    @property
    def uploads_dir(self) -> Path:
        return self.UPLOADS_DIR or self.public_dir / "uploads"

    @property
    def db_file(self) -> Path:
        return self.data_dir / "db.json"

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def uses_default_secret(self) -> bool:
        return self.SECRET_KEY == DEFAULT_SECRET_KEY
