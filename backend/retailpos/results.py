# Overview: Uniform result envelope returned by every public engine operation.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import EngineError, ErrorKind


@dataclass
class ActionResult:
    """
    {status, message, data} envelope.

    status is an HTTP-like code (200/201 success, 4xx/5xx failure).
    error_kind is None on success; details carries structured failure context
    (e.g. available/requested stock).
    """
    status: int
    message: str
    data: Any = None
    error_kind: ErrorKind | None = None
    details: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error_kind is None and self.status < 400

    @classmethod
    def success(cls, data: Any, message: str, status: int = 200) -> "ActionResult":
        return cls(status=status, message=message, data=data)

    @classmethod
    def failure(cls, exc: EngineError) -> "ActionResult":
        return cls(
            status=exc.status,
            message=exc.message,
            data=None,
            error_kind=exc.kind,
            details=dict(exc.details),
        )

    def to_dict(self) -> dict:
        payload = {
            "status": self.status,
            "message": self.message,
            "data": self.data,
        }
        if self.error_kind is not None:
            payload["error"] = self.error_kind.value
            if self.details:
                payload["details"] = self.details
        return payload
