from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

try:
    from backend.app.services.scoring import iso8601_duration_to_seconds
except ModuleNotFoundError:
    from app.services.scoring import iso8601_duration_to_seconds


PLATFORMS = ("youtube", "tiktok", "instagram")
COUNTRIES = ("KR", "JP", "US")
MIN_TIME_RANGE_HOURS = 1
MAX_TIME_RANGE_HOURS = 72


class QueryValidationError(ValueError):
    pass


class ContentItem(BaseModel):
    """
    One discovered video, normalized to the same shape for every platform.
    Serialized with camelCase keys (channelTitle, viewCount, viralScore, ...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    title: str
    channel_title: str = ""
    published_at: datetime
    thumbnail: str | None = None
    view_count: int = Field(default=0, ge=0)
    like_count: int = Field(default=0, ge=0)
    comment_count: int = Field(default=0, ge=0)
    duration: str = "PT0S"
    url: str = ""
    platform: str
    country: str
    category: str = "other"
    viral_score: int = Field(default=0, ge=0)
    hours_ago: int = Field(default=0, ge=0)
    collected: bool = False

    @property
    def duration_seconds(self) -> int:
        return iso8601_duration_to_seconds(self.duration)

    def dedup_key(self) -> str:
        return f"{self.title[:50]}_{self.channel_title}"

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def _split_codes(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    codes: list[str] = []
    for raw in value:
        code = str(raw).strip()
        if code and code not in codes:
            codes.append(code)
    return codes


class SearchQuery(BaseModel):
    countries: list[str]
    platforms: list[str]
    categories: list[str] = Field(default_factory=list)
    time_range: int = 24
    min_views: int = 500_000
    use_cache: bool = True

    @field_validator("countries", mode="before")
    @classmethod
    def _normalize_countries(cls, value: Any) -> list[str]:
        codes = [code.upper() for code in _split_codes(value)]
        if not codes:
            raise ValueError("Select at least one country.")
        unknown = [code for code in codes if code not in COUNTRIES]
        if unknown:
            raise ValueError(f"Unsupported country: {', '.join(unknown)}")
        return list(dict.fromkeys(codes))

    @field_validator("platforms", mode="before")
    @classmethod
    def _normalize_platforms(cls, value: Any) -> list[str]:
        codes = [code.lower() for code in _split_codes(value)]
        if not codes:
            raise ValueError("Select at least one platform.")
        unknown = [code for code in codes if code not in PLATFORMS]
        if unknown:
            raise ValueError(f"Unsupported platform: {', '.join(unknown)}")
        return list(dict.fromkeys(codes))

    @field_validator("categories", mode="before")
    @classmethod
    def _normalize_categories(cls, value: Any) -> list[str]:
        return _split_codes(value)

    @field_validator("time_range", "min_views", mode="before")
    @classmethod
    def _coerce_int(cls, value: Any, info: ValidationInfo) -> Any:
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                label = "timeRange" if info.field_name == "time_range" else "minViews"
                raise ValueError(f"{label} must be a whole number") from None
        return value

    @field_validator("time_range")
    @classmethod
    def _check_time_range(cls, value: int) -> int:
        if not MIN_TIME_RANGE_HOURS <= value <= MAX_TIME_RANGE_HOURS:
            raise ValueError(
                f"timeRange must be between {MIN_TIME_RANGE_HOURS} and {MAX_TIME_RANGE_HOURS} hours"
            )
        return value

    @field_validator("min_views")
    @classmethod
    def _check_min_views(cls, value: int) -> int:
        if value < 0:
            raise ValueError("minViews must not be negative")
        return value

    @classmethod
    def parse(cls, **params: Any) -> "SearchQuery":
        try:
            return cls(**params)
        except ValidationError as exc:
            messages = []
            for error in exc.errors():
                message = str(error.get("msg") or "invalid value")
                messages.append(message.removeprefix("Value error, "))
            raise QueryValidationError("; ".join(messages)) from exc
