from __future__ import annotations

from typing import Any, Dict, List, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness constraint rejects a write."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    @property
    def fields(self) -> List[str]:
        return list(self.detail.get("fields", []))


__all__ = ["ConstraintViolation"]
