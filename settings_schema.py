from typing import List, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ValidationError, field_validator


class AppSettings(BaseModel):
    db_path: str = "fittrack.db"
    timezone: str = "UTC"
    log_format: Literal["json", "text"] = "json"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    cors_origins: List[str] = ["http://localhost:5173"]
    rate_limit: Optional[int] = None
    rate_window: int = 60
    firebase_credentials: Optional[str] = None
    firebase_project_id: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone: {value}")
        return value

    @field_validator("rate_limit", "rate_window")
    @classmethod
    def _positive(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 1:
            raise ValueError("must be positive")
        return value

    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def validate_settings(data: dict) -> AppSettings:
    try:
        return AppSettings(**data)
    except ValidationError as e:
        raise ValueError(str(e))
