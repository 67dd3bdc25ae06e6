from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Dict, List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer

from .timeutils import TIME_PATTERN


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


def _check_time(value: Optional[str]) -> Optional[str]:
    if value is not None and not TIME_PATTERN.match(value):
        raise ValueError("invalid time format")
    return value


class ActivityDocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    original_name: str
    content_type: Optional[str]
    size_bytes: int
    created_at: dt.datetime

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "content_type": self.content_type,
            "size_bytes": self.size_bytes,
            "created_at": _serialize_datetime(self.created_at),
        }


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    user_id: str
    date: dt.date
    start_time: str
    end_time: str
    description: str
    project_id: Optional[str]
    activity_type_id: Optional[str]
    system: Optional[str]
    hours: Optional[Decimal]
    state: str
    created_at: dt.datetime
    updated_at: dt.datetime
    documents: List[ActivityDocumentResponse] = Field(default_factory=list)

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "date": self.date.isoformat(),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "description": self.description,
            "project_id": self.project_id,
            "activity_type_id": self.activity_type_id,
            "system": self.system,
            "hours": float(self.hours) if self.hours is not None else None,
            "state": self.state,
            "created_at": _serialize_datetime(self.created_at),
            "updated_at": _serialize_datetime(self.updated_at),
            "documents": [document._serialize() for document in self.documents],
        }


class SupervisedActivityResponse(BaseModel):
    activity: ActivityResponse
    user_name: str
    project_name: str
    activity_type_name: str
    hours: Decimal

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        payload = self.activity._serialize()
        payload.update(
            {
                "user_name": self.user_name,
                "project_name": self.project_name,
                "activity_type_name": self.activity_type_name,
                "hours": float(self.hours),
            }
        )
        return payload


class ActivityCreateRequest(BaseModel):
    date: dt.date
    start_time: str
    end_time: str
    description: str
    project_id: Optional[str] = None
    activity_type_id: Optional[str] = None
    system: Optional[str] = None
    state: Literal["draft", "submitted"] = "draft"

    @field_validator("start_time", "end_time")
    @classmethod
    def _validate_time(cls, value: str) -> str:
        return _check_time(value)


class ActivityUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    description: Optional[str] = None
    project_id: Optional[str] = None
    activity_type_id: Optional[str] = None
    system: Optional[str] = None
    state: Optional[Literal["draft", "submitted"]] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _validate_time(cls, value: Optional[str]) -> Optional[str]:
        return _check_time(value)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ActivitySubmitRequest(BaseModel):
    ids: List[str] = Field(default_factory=list)


class ActivitySubmitResponse(BaseModel):
    submitted: int
    activities: List[ActivityResponse]


class ErrorResponse(BaseModel):
    detail: str
    code: str
