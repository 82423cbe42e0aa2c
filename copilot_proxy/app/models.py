"""
Data Models Module

Pydantic models for the JSON payloads the proxy itself produces. Proxied
chat responses are never modelled: they are relayed byte-for-byte.
"""

from datetime import datetime, timezone
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-01-01T00:00:00.000Z"""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


# ============================================================================
# Health Models
# ============================================================================

class HealthResponse(BaseModel):
    """Liveness payload returned by GET /health."""
    status: str = Field(default="OK", description="Service status")
    timestamp: str = Field(default_factory=utc_timestamp, description="Current server time (ISO-8601)")


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Error payload for upstream connection failures and unhandled exceptions."""
    error: str = Field(..., description="Short error category")
    message: str = Field(..., description="Underlying error text")


class NotFoundResponse(BaseModel):
    """Routing miss payload listing the endpoints callers can use."""
    model_config = ConfigDict(populate_by_name=True)

    error: str = Field(default="Endpoint not found")
    available_endpoints: Dict[str, str] = Field(..., alias="availableEndpoints")
