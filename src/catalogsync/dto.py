"""Request models for the public operations; camelCase and snake_case keys are both accepted."""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from catalogsync.exceptions import InvalidRequestError

MAX_WEBHOOK_RECORDS = 500

DtoT = TypeVar("DtoT", bound="RequestDto")


class RequestDto(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
    )


class TriggerSyncDto(RequestDto):
    datasource_id: str = Field(min_length=1)
    force_full: bool = False


class DetectDuplicatesDto(RequestDto):
    collection: str = Field(min_length=1)
    similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    limit: int | None = Field(default=None, ge=1)
    use_ai_classification: bool = False
    filters: dict[str, str | list[str]] | None = None


class ValidateProductExistsDto(RequestDto):
    collection: str = Field(min_length=1)
    descripcion: str = Field(min_length=1)
    marca: str | None = None
    modelo: str | None = None
    similarity_threshold: float = Field(default=0.90, ge=0.0, le=1.0)


class WebhookSyncDto(RequestDto):
    """Record ids changed at the source (``codes`` in webhook payloads)."""

    codes: list[str] = Field(min_length=1, max_length=MAX_WEBHOOK_RECORDS)

    @field_validator("codes")
    @classmethod
    def _non_blank(cls, codes: list[str]) -> list[str]:
        cleaned = [c.strip() for c in codes]
        if any(not c for c in cleaned):
            msg = "codes must not contain blank values"
            raise ValueError(msg)
        return cleaned


def parse_dto(model: type[DtoT], data: dict[str, Any]) -> DtoT:
    """Validate *data* into *model*.

    Raises:
        InvalidRequestError: listing every validation problem.
    """
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        msg = f"Invalid {model.__name__}: {problems}"
        raise InvalidRequestError(msg) from exc
