"""Request payload validation producing field-to-message error maps."""

from __future__ import annotations

from typing import Any, ClassVar, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from ..domain.errors import InvalidInputError


class RequestModel(BaseModel):
    """Base for JSON bodies accepted by the account routes (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    error_messages: ClassVar[dict[str, str]] = {}


M = TypeVar("M", bound=RequestModel)


def parse_payload(model: type[M], payload: Any, *, error_code: str) -> M:
    """Validate ``payload`` against ``model``.

    Raises
    ------
    InvalidInputError
        With one message per failing field; the model's ``error_messages``
        override pydantic's defaults.
    """
    try:
        return model.model_validate(payload if payload is not None else {})
    except ValidationError as exc:
        fields: dict[str, str] = {}
        for error in exc.errors():
            loc = error.get("loc") or ()
            field = str(loc[0]) if loc else "body"
            fields.setdefault(field, model.error_messages.get(field, error["msg"]))
        raise InvalidInputError(error_code, fields) from exc
