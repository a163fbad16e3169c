"""
types.py - Common API Types

- OrjsonModel: pydantic base model with orjson serialization.
- Envelope: the uniform success/failure response returned by every operation.
"""

from __future__ import annotations

from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field


class OrjsonModel(BaseModel):
    """Base model powered by orjson."""

    def model_dump_json_str(self, *, option: int | None = None, **kwargs) -> str:
        """Dump to JSON string using orjson; `option` takes orjson.OPT_* flags."""
        return orjson.dumps(self.model_dump(mode="json", **kwargs), option=option).decode()


class ErrorDetail(OrjsonModel):
    """Structured failure detail, preserved from the runner where available."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: str
    name: str | None = None
    message: str
    code: str | None = None
    category: str | None = None
    exit_code: int | None = Field(None, alias="exitCode")
    context: dict[str, Any] | None = None


class Envelope(OrjsonModel):
    """
    Response envelope for every operation.

    Any operation that resolved a target carries it in `targetOrg`, on
    success and on failure alike.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    success: bool = Field(..., description="Execution success status")
    message: str | None = Field(None, description="Human-readable summary or failure reason")
    target_org: str | None = Field(None, alias="targetOrg", description="Effective target org")
    data: Any = Field(None, description="Operation payload")
    error: ErrorDetail | None = Field(None, description="Structured failure detail")

    @classmethod
    def ok(cls, data: Any = None, target_org: str | None = None, message: str | None = None) -> Envelope:
        return cls(success=True, data=data, target_org=target_org, message=message)

    @classmethod
    def fail(
        cls,
        message: str,
        target_org: str | None = None,
        error: dict[str, Any] | None = None,
    ) -> Envelope:
        detail = ErrorDetail.model_validate(error) if error else None
        return cls(success=False, message=message, target_org=target_org, error=detail)

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys and unset fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return self.model_dump_json_str(by_alias=True, exclude_none=True, option=orjson.OPT_INDENT_2)


# Output schema advertised for every tool; `data` is unconstrained.
ENVELOPE_OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "success": {"type": "boolean"},
        "message": {"type": "string"},
        "targetOrg": {"type": "string"},
        "data": {},
        "error": {"type": "object"},
    },
    "required": ["success"],
}


__all__ = ["ENVELOPE_OUTPUT_SCHEMA", "Envelope", "ErrorDetail", "OrjsonModel"]
