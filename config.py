import os
from typing import List

from pydantic import BaseModel, Field


class Settings(BaseModel):
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "attendance"
    jwt_secret: str = "dev-secret-key-change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24
    attendance_threshold: float = Field(70, ge=0, le=100)
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "database_url": os.getenv("DATABASE_URL"),
            "database_name": os.getenv("DATABASE_NAME"),
            "jwt_secret": os.getenv("JWT_SECRET"),
            "access_token_expire_minutes": os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES"),
            "attendance_threshold": os.getenv("ATTENDANCE_THRESHOLD"),
            "log_level": os.getenv("LOG_LEVEL"),
            "port": os.getenv("PORT"),
        }
        origins = os.getenv("CORS_ORIGINS")
        if origins:
            values["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
        return cls(**{k: v for k, v in values.items() if v is not None})
