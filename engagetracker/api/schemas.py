from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def to_utc_iso(value: datetime) -> str:
    return _aware(value).astimezone(UTC).isoformat()


def parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return _aware(value)
    return _aware(datetime.fromisoformat(str(value)))


def camelize(value: Any) -> Any:
    """Rename dict keys to camelCase, recursively, for JSON responses.

    Decimals become floats so scores serialize as numbers.
    """
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {to_camel(str(key)): camelize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [camelize(item) for item in value]
    return value


class UserCreate(CamelModel):
    username: str = Field(..., min_length=1, max_length=64)
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    profile_image_url: str | None = None
    role: Literal["organizer", "participant"] = "participant"


class EventCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    start_date: datetime
    end_date: datetime
    organizer_id: int = Field(..., ge=1)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_window(self) -> EventCreate:
        if _aware(self.end_date) < _aware(self.start_date):
            raise ValueError("endDate must not be before startDate")
        return self


class SessionCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    speaker: str | None = None
    room: str | None = None
    start_time: datetime
    end_time: datetime
    max_capacity: int | None = Field(default=None, ge=1)
    is_active: bool = False
    qr_code: str | None = None

    @model_validator(mode="after")
    def _check_window(self) -> SessionCreate:
        if _aware(self.end_time) < _aware(self.start_time):
            raise ValueError("endTime must not be before startTime")
        return self


class SessionUpdate(CamelModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    speaker: str | None = None
    room: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    max_capacity: int | None = Field(default=None, ge=1)
    is_active: bool | None = None
    qr_code: str | None = None

    @model_validator(mode="after")
    def _check_window(self) -> SessionUpdate:
        if self.start_time and self.end_time and _aware(self.end_time) < _aware(self.start_time):
            raise ValueError("endTime must not be before startTime")
        return self

    def to_updates(self) -> dict[str, Any]:
        updates = self.model_dump(exclude_unset=True)
        for key in ("title", "start_time", "end_time", "is_active"):
            if key in updates and updates[key] is None:
                del updates[key]
        if "description" in updates and updates["description"] is None:
            updates["description"] = ""
        for key in ("start_time", "end_time"):
            if isinstance(updates.get(key), datetime):
                updates[key] = to_utc_iso(updates[key])
        return updates


class ParticipantRegister(CamelModel):
    user_id: int = Field(..., ge=1)


class ParticipantAction(CamelModel):
    participant_id: int = Field(..., ge=1)


class PollCreate(CamelModel):
    question: str = Field(..., min_length=1, max_length=500)
    options: list[str] = Field(..., min_length=2, max_length=20)

    @field_validator("options")
    @classmethod
    def _strip_options(cls, value: list[str]) -> list[str]:
        cleaned = [option.strip() for option in value]
        if any(not option for option in cleaned):
            raise ValueError("poll options must not be empty")
        return cleaned


class PollResponseCreate(ParticipantAction):
    selected_option: int = Field(..., ge=0)


class QuestionCreate(ParticipantAction):
    question: str = Field(..., min_length=1, max_length=1000)
    is_anonymous: bool = False


class QuestionAnswer(CamelModel):
    answer: str = Field(..., min_length=1, max_length=4000)


class ResourceCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: Literal["file", "link", "video"]
    url: str = Field(..., min_length=1, max_length=2000)
    file_size: str | None = None
    description: str | None = None
