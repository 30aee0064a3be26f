"""
Common schemas shared across endpoints.
"""

from typing import Any, List, Optional
from pydantic import BaseModel


__all__ = ["ErrorResponse"]


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    max_size_supported: Optional[str] = None
    supported_methods: Optional[List[str]] = None
    details: Optional[Any] = None  # Stack trace, development only
