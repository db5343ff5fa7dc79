from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Any, Awaitable, Callable, Dict, Optional

import httpx
from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict

from .utils import validate_metadata

if TYPE_CHECKING:
    from .models import Run


def _empty_if_none(value: Optional[Dict[str, str]]) -> Dict[str, str]:
    return value or {}


# Metadata as sent by the caller: checked against the service limits.
RequestMetadata = Annotated[Dict[str, str], AfterValidator(validate_metadata)]

# Metadata as returned by the service, which may send null.
ResponseMetadata = Annotated[Dict[str, str], BeforeValidator(_empty_if_none)]

ResponseHook = Callable[[httpx.Response], None]
RunStatusCallback = Callable[["Run"], None]
SleepFunc = Callable[[float], None]
AsyncSleepFunc = Callable[[float], Awaitable[None]]
ToolHandler = Callable[..., Any]
AsyncToolHandler = Callable[..., Awaitable[Any]]


class FrozenModel(BaseModel):
    """Base for snapshots returned by the service."""

    model_config = ConfigDict(frozen=True)
