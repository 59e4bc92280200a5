from typing import Any, List, Optional
from urllib.parse import quote_plus

from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "HPS Operations"
    VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"

    # --- Environment & Debug ---
    ENVIRONMENT: str = "local"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Logging ---
    LOG_DIR: str = "logs"
    LOG_RETENTION_DAYS: int = 14
    ERROR_LOG_RETENTION_DAYS: int = 30
    LOG_TO_CONSOLE: Optional[bool] = None  # None -> enabled outside production

    # --- Security ---
    SECRET_KEY: Optional[SecretStr] = Field(
        default=None, validate_default=True
    )  # JWT signing; loaded from .env
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    COOKIE_SECURE: bool = False
    ADMIN_USER_LEVEL: str = "1"

    # --- CORS ---
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=list,
        validate_default=True,
        description="List of allowed CORS origins. Configure in .env",
    )

    # --- Request monitoring ---
    MONITOR_LOG_TO_DATABASE: bool = True
    MONITOR_LOG_TO_FILE: bool = True
    MONITOR_TRACK_PERFORMANCE: bool = True
    MONITOR_TRACK_USER_ACTIVITY: bool = True
    MONITOR_EXCLUDE_PATHS: List[str] = Field(
        default_factory=lambda: ["/health", "/docs", "/redoc", "/api/v1/openapi.json"],
        description="Path prefixes served without request monitoring",
    )
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # --- Database Config ---
    DB_HOST: Optional[str] = None
    DB_USER: Optional[str] = None
    DB_PASSWORD: Optional[str] = None
    DB_PORT: Optional[str] = "5432"
    DB_NAME: Optional[str] = "postgres"
    DB_AUTO_CREATE: bool = False

    # --- Connection Pool ---
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_PRE_PING: bool = True

    # --- URL Maestra ---
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=True, extra="ignore"
    )

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def default_allowed_origins(
        cls, v: Optional[List[str]], info: ValidationInfo
    ) -> Optional[List[str]]:
        env = info.data.get("ENVIRONMENT") or "local"
        if env != "production":
            if v is None:
                return ["http://localhost:3000"]
            if isinstance(v, str) and v.strip() in ("", "[]"):
                return ["http://localhost:3000"]
            if isinstance(v, list) and len(v) == 0:
                return ["http://localhost:3000"]
        return v

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str], info: ValidationInfo) -> Any:
        if isinstance(v, str) and v:
            return v

        values = info.data
        if not values.get("DB_HOST") or not values.get("DB_USER"):
            # Local development falls back to a SQLite file next to the app
            if (values.get("ENVIRONMENT") or "local") == "local":
                return "sqlite:///./hps_operations.db"
            return None

        user = values.get("DB_USER")
        # URL-encode the password so @, #, ! and friends survive
        password = quote_plus(values.get("DB_PASSWORD") or "")
        host = values.get("DB_HOST")
        port = values.get("DB_PORT", "5432")
        db = values.get("DB_NAME", "postgres")

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @field_validator("SECRET_KEY", mode="before")
    @classmethod
    def validate_secret_key(
        cls, v: Optional[SecretStr], info: ValidationInfo
    ) -> Optional[SecretStr]:
        # Require a SECRET_KEY for non-local deployments
        env = info.data.get("ENVIRONMENT") or "local"
        if env != "local" and not v:
            raise ValueError(
                "SECRET_KEY must be set in environment for non-local deployments"
            )
        return v

    @property
    def console_logging_enabled(self) -> bool:
        if self.LOG_TO_CONSOLE is not None:
            return self.LOG_TO_CONSOLE
        return self.ENVIRONMENT != "production"

    def jwt_secret(self) -> str:
        if self.SECRET_KEY is None:
            return "development-secret-key"
        value = self.SECRET_KEY.get_secret_value()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            return value[1:-1]
        return value


settings = Settings()
