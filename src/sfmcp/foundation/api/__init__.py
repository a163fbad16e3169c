"""API types shared across layers."""

from .types import ENVELOPE_OUTPUT_SCHEMA, Envelope, ErrorDetail, OrjsonModel

__all__ = ["ENVELOPE_OUTPUT_SCHEMA", "Envelope", "ErrorDetail", "OrjsonModel"]
