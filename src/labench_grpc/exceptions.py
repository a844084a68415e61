"""Error taxonomy for requester construction and execution."""

from __future__ import annotations

from typing import Optional

import grpc


class LabenchError(Exception):
    """Base error for the gRPC requester core."""


class ConfigError(LabenchError):
    """Contradictory or incomplete configuration."""


class SchemaError(LabenchError):
    """Method descriptor resolution failed."""


class PayloadError(LabenchError):
    """Request payload could not be built."""


class FieldNotFound(PayloadError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"couldn't find field {field} in message {message}")
        self.field = field
        self.message = message


class TypeMismatch(PayloadError):
    def __init__(self, field: str, detail: str) -> None:
        super().__init__(f"field {field}: {detail}")
        self.field = field
        self.detail = detail


class TransportError(LabenchError):
    """Channel establishment or a single RPC failed."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[grpc.StatusCode] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details

    @classmethod
    def from_rpc_error(cls, call: str, exc: grpc.RpcError) -> "TransportError":
        code_fn = getattr(exc, "code", None)
        details_fn = getattr(exc, "details", None)
        code = code_fn() if callable(code_fn) else None
        details = details_fn() if callable(details_fn) else None
        name = code.name if code is not None else "UNKNOWN"
        return cls(f"{call} failed: {name}: {details or exc}", code=code, details=details)
