from typing import List, Optional
from urllib.parse import quote_plus

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Project Information
    PROJECT_NAME: str = "CareCoord"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"

    # Server settings
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000
    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    # Database
    POSTGRES_SERVER: Optional[str] = None
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: Optional[str] = None
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_DB: Optional[str] = None
    SQLALCHEMY_DATABASE_URI: Optional[str] = None

    # Security
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Timezone used when a schedule does not declare one
    DEFAULT_TIMEZONE: str = "Australia/Melbourne"

    # Email (SMTP)
    SMTP_SERVER: Optional[str] = None
    SMTP_PORT: Optional[int] = None
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    FROM_EMAIL: Optional[str] = None

    # AWS
    AWS_REGION: str = "ap-southeast-2"

    # --- Validators & Derived Settings ---
    @field_validator("DEFAULT_TIMEZONE", mode="before")
    @classmethod
    def default_timezone_when_blank(cls, v: Optional[str]) -> str:
        if v is None or (isinstance(v, str) and v.strip() == ""):
            return "Australia/Melbourne"
        return v

    @model_validator(mode="after")
    def _finalize(self) -> "Settings":
        # Derive SQLALCHEMY_DATABASE_URI if not provided
        if not self.SQLALCHEMY_DATABASE_URI:
            if self.POSTGRES_USER and self.POSTGRES_SERVER and self.POSTGRES_DB:
                safe_user = quote_plus(self.POSTGRES_USER)
                if self.POSTGRES_PASSWORD:
                    safe_password = quote_plus(self.POSTGRES_PASSWORD)
                    self.SQLALCHEMY_DATABASE_URI = (
                        f"postgresql://{safe_user}:{safe_password}@"
                        f"{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
                    )
                else:
                    self.SQLALCHEMY_DATABASE_URI = (
                        f"postgresql://{safe_user}@{self.POSTGRES_SERVER}:"
                        f"{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
                    )
            else:
                # Local development fallback
                self.SQLALCHEMY_DATABASE_URI = "sqlite:///./carecoord.db"
        return self


settings = Settings()
