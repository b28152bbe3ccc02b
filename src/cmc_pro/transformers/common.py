"""Shared base model and helpers for payload transformation.

The API adds fields over time, so every model ignores unknown keys and every
field the API may omit is optional.  Keyed payloads (``quotes/latest``,
``info``) come back as ``{"1": {...}}`` when queried by id and as
``{"BTC": [{...}, {...}]}`` when queried by symbol; :func:`validate_keyed`
accepts both.
"""

from __future__ import annotations

from typing import Any, Mapping, TypeVar, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from cmc_pro.core.exceptions import InvalidResponseError

M = TypeVar("M", bound="CmcModel")


class CmcModel(BaseModel):
    """Base for all payload models: lenient on input, immutable once built."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


def validate_one(model: type[M], raw: Any) -> M:
    """Validate a single record, raising :class:`InvalidResponseError` on failure."""
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise InvalidResponseError(f"Unexpected {model.__name__} payload: {exc.error_count()} errors") from exc


def validate_list(model: type[M], raw: Any) -> list[M]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise InvalidResponseError(f"Expected a list of {model.__name__}, got {type(raw).__name__}")
    return [validate_one(model, item) for item in raw]


def validate_keyed(model: type[M], raw: Any) -> dict[str, Union[M, list[M]]]:
    """Validate an id- or symbol-keyed mapping of records."""
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise InvalidResponseError(f"Expected a mapping of {model.__name__}, got {type(raw).__name__}")
    result: dict[str, Union[M, list[M]]] = {}
    for key, value in raw.items():
        if isinstance(value, list):
            result[str(key)] = validate_list(model, value)
        else:
            result[str(key)] = validate_one(model, value)
    return result
