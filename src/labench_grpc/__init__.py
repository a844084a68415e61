"""Schema-driven gRPC requesters for labench."""

from .config import GrpcRequestConfig, load_config, parse_config
from .descriptors import ProtoSource, ProtosetSource, resolve_method, select_schema_source
from .exceptions import (
    ConfigError,
    FieldNotFound,
    LabenchError,
    PayloadError,
    SchemaError,
    TransportError,
    TypeMismatch,
)
from .lazy import CellState, LazyCell
from .payload import (
    BinaryData,
    JsonData,
    Payload,
    StructuredData,
    build_payload,
    build_payloads,
    message_from_mapping,
)
from .requester import CallContext, GrpcRequester, GrpcRequesterFactory
from .schema import Cardinality, FieldKind, FieldSchema, MessageSchema, MethodSchema

__all__ = [
    "GrpcRequesterFactory",
    "GrpcRequester",
    "CallContext",
    "GrpcRequestConfig",
    "load_config",
    "parse_config",
    "ProtoSource",
    "ProtosetSource",
    "resolve_method",
    "select_schema_source",
    "StructuredData",
    "JsonData",
    "BinaryData",
    "Payload",
    "build_payload",
    "build_payloads",
    "message_from_mapping",
    "LazyCell",
    "CellState",
    "FieldKind",
    "Cardinality",
    "FieldSchema",
    "MessageSchema",
    "MethodSchema",
    "LabenchError",
    "ConfigError",
    "SchemaError",
    "PayloadError",
    "FieldNotFound",
    "TypeMismatch",
    "TransportError",
]
