import os
from typing import Optional

from pydantic import BaseModel, Field


DEFAULT_JWT_SECRET = "dev-only-secret-change-me-in-production"


class Settings(BaseModel):
    JWT_SECRET: str = DEFAULT_JWT_SECRET
    JWT_ALGORITHM: str = "HS256"

    LOG_LEVEL: str = "INFO"
    LOG_COLORS: bool = True

    STORE_TIMEOUT_SECONDS: float = Field(default=2.0, gt=0)
    STORE_RETRY_ATTEMPTS: int = Field(default=3, ge=1)
    STORE_RETRY_DELAY_SECONDS: float = Field(default=0.05, ge=0)

    COUPON_CODE_LENGTH: int = Field(default=8, ge=4, le=32)
    CODE_GENERATION_ATTEMPTS: int = Field(default=10, ge=1)
    CAS_MAX_ATTEMPTS: int = Field(default=16, ge=1)
    LIFETIME_COUPON_DEFAULT_DAYS: int = Field(default=365, ge=1)

    RECENT_TRANSACTIONS_LIMIT: int = Field(default=20, ge=1)
    CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["*"])

    @property
    def uses_default_jwt_secret(self) -> bool:
        return self.JWT_SECRET == DEFAULT_JWT_SECRET

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        env = os.environ if environ is None else environ
        values: dict = {}
        for name, field in cls.model_fields.items():
            raw = env.get(name)
            if raw is None:
                continue
            if field.annotation is bool:
                values[name] = raw.strip().lower() in ("1", "true", "yes", "on")
            elif name == "CORS_ORIGINS":
                values[name] = [origin.strip() for origin in raw.split(",") if origin.strip()]
            else:
                values[name] = raw
        return cls(**values)


settings = Settings.from_env()
