"""
Typed mutation payloads.

Each entity kind has a closed set of optional fields; unknown keys are
rejected instead of being forwarded to the backend.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Annotated, Any, ClassVar, Dict, FrozenSet, Literal, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .errors import InvalidInputError
from .models import KendraType, Role

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PIN_CODE_PATTERN = r"^\d{6}$"

ModelT = TypeVar("ModelT", bound=BaseModel)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class _Update(_Payload):
    nullable_fields: ClassVar[FrozenSet[str]] = frozenset()

    def as_changes(self) -> Dict[str, Any]:
        """
        Fields the caller actually set, without the ``kind`` tag.

        An explicit ``None`` only clears columns listed in ``nullable_fields``;
        elsewhere it is treated as "leave unchanged".
        """

        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True, exclude={"kind"}).items()
            if value is not None or name in self.nullable_fields
        }


class CityUpdate(_Update):
    kind: Literal["city"] = "city"
    city_name: Optional[str] = Field(None, min_length=1)
    pin_code: Optional[str] = Field(None, pattern=PIN_CODE_PATTERN)


class KendraUpdate(_Update):
    kind: Literal["kendra"] = "kendra"
    kendra_name: Optional[str] = Field(None, min_length=1)
    city_id: Optional[str] = Field(None, min_length=1)
    kendra_type: Optional[KendraType] = None


class UserUpdate(_Update):
    kind: Literal["user"] = "user"
    nullable_fields: ClassVar[FrozenSet[str]] = frozenset({"kendra_id"})
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = None
    role: Optional[Role] = None
    kendra_id: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not EMAIL_PATTERN.match(value):
            raise ValueError("Valid email is required")
        return value


class ReportUpdate(_Update):
    kind: Literal["report"] = "report"
    nullable_fields: ClassVar[FrozenSet[str]] = frozenset({"description"})
    week_start_date: Optional[date] = None
    yuva_kendra_attendance: Optional[int] = Field(None, ge=0)
    bhavferni_attendance: Optional[int] = Field(None, ge=0)
    pravachan_attendance: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None


EntityUpdate = Annotated[
    Union[CityUpdate, KendraUpdate, UserUpdate, ReportUpdate],
    Field(discriminator="kind"),
]

_entity_update_adapter: TypeAdapter = TypeAdapter(EntityUpdate)


class ReportDraft(_Payload):
    kendra_id: str = Field(..., min_length=1)
    week_start_date: date
    yuva_kendra_attendance: int = Field(..., ge=0)
    bhavferni_attendance: int = Field(..., ge=0)
    pravachan_attendance: int = Field(..., ge=0)
    description: Optional[str] = None


class CityDraft(_Payload):
    city_name: str = Field(..., min_length=1)
    pin_code: str = Field(..., pattern=PIN_CODE_PATTERN)


class KendraDraft(_Payload):
    kendra_name: str = Field(..., min_length=1)
    city_id: str = Field(..., min_length=1)
    kendra_type: KendraType


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "payload"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def parse_payload(model: Type[ModelT], payload: Union[ModelT, Mapping[str, Any]]) -> ModelT:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(dict(payload))
    except ValidationError as exc:
        raise InvalidInputError(_describe(exc), kind="invalid_payload") from exc


def parse_update(payload: Mapping[str, Any]) -> Union[CityUpdate, KendraUpdate, UserUpdate, ReportUpdate]:
    """Pick the update variant from the ``kind`` tag and validate it."""

    try:
        return _entity_update_adapter.validate_python(dict(payload))
    except ValidationError as exc:
        raise InvalidInputError(_describe(exc), kind="invalid_payload") from exc
