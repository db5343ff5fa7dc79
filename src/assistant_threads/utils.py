from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .exceptions import AssistantThreadsError

MAX_METADATA_ENTRIES = 16
MAX_METADATA_KEY_LENGTH = 64
MAX_METADATA_VALUE_LENGTH = 512

MAX_PAGE_LIMIT = 100

ModelT = TypeVar("ModelT", bound=BaseModel)


def extract_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if data.get("message"):
            return str(data["message"])
    return response.text or f"HTTP {response.status_code}"


def validate_metadata(metadata: Dict[str, str]) -> Dict[str, str]:
    """Reject metadata the service would refuse, instead of truncating it."""
    if len(metadata) > MAX_METADATA_ENTRIES:
        raise ValueError(
            f"metadata supports at most {MAX_METADATA_ENTRIES} entries, got {len(metadata)}"
        )
    for key, value in metadata.items():
        if len(key) > MAX_METADATA_KEY_LENGTH:
            raise ValueError(
                f"metadata key '{key[:16]}...' exceeds {MAX_METADATA_KEY_LENGTH} characters"
            )
        if len(value) > MAX_METADATA_VALUE_LENGTH:
            raise ValueError(
                f"metadata value for '{key}' exceeds {MAX_METADATA_VALUE_LENGTH} characters"
            )
    return metadata


def require_id(value: str, name: str) -> str:
    if not str(value).strip():
        raise AssistantThreadsError(f"{name} must be a non-empty string")
    return value


def list_params(
    limit: Optional[int] = None,
    order: Optional[str] = None,
    after: Optional[str] = None,
    before: Optional[str] = None,
) -> Dict[str, str]:
    params: Dict[str, str] = {}
    if limit is not None:
        if not 1 <= limit <= MAX_PAGE_LIMIT:
            raise AssistantThreadsError(f"limit must be between 1 and {MAX_PAGE_LIMIT}")
        params["limit"] = str(limit)
    if order:
        if order not in ("asc", "desc"):
            raise AssistantThreadsError("order must be 'asc' or 'desc'")
        params["order"] = order
    if after:
        params["after"] = after
    if before:
        params["before"] = before
    return params


def validate_response(model: Type[ModelT], data: Any) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise AssistantThreadsError(
            f"Invalid {model.__name__} payload: {exc.error_count()} validation error(s)"
        ) from exc


def to_payload(request: BaseModel) -> Dict[str, Any]:
    return request.model_dump(mode="json", exclude_none=True)


def metadata_payload(metadata: Mapping[str, str]) -> Dict[str, Any]:
    return {"metadata": validate_metadata(dict(metadata))}
