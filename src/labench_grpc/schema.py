"""Typed view over protobuf descriptors used by the payload builder.

The builder only asks four questions of a schema: find a field by name, what
kind it is, how many values it holds, and what schema sits underneath it.
These wrappers answer exactly those from the compiled descriptors so that the
builder never reaches for message reflection directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from google.protobuf import descriptor_pb2, message_factory
from google.protobuf.descriptor import Descriptor, FieldDescriptor, MethodDescriptor
from google.protobuf.message import Message


class FieldKind(str, Enum):
    INT32 = "int32"
    INT64 = "int64"
    UINT32 = "uint32"
    UINT64 = "uint64"
    FLOAT = "float"
    DOUBLE = "double"
    BOOL = "bool"
    STRING = "string"
    BYTES = "bytes"
    ENUM = "enum"
    MESSAGE = "message"

    @property
    def is_numeric(self) -> bool:
        return self in _NUMERIC_KINDS


_NUMERIC_KINDS = frozenset(
    {
        FieldKind.INT32,
        FieldKind.INT64,
        FieldKind.UINT32,
        FieldKind.UINT64,
        FieldKind.FLOAT,
        FieldKind.DOUBLE,
    }
)

_KIND_BY_TYPE = {
    FieldDescriptor.TYPE_DOUBLE: FieldKind.DOUBLE,
    FieldDescriptor.TYPE_FLOAT: FieldKind.FLOAT,
    FieldDescriptor.TYPE_INT64: FieldKind.INT64,
    FieldDescriptor.TYPE_SINT64: FieldKind.INT64,
    FieldDescriptor.TYPE_SFIXED64: FieldKind.INT64,
    FieldDescriptor.TYPE_UINT64: FieldKind.UINT64,
    FieldDescriptor.TYPE_FIXED64: FieldKind.UINT64,
    FieldDescriptor.TYPE_INT32: FieldKind.INT32,
    FieldDescriptor.TYPE_SINT32: FieldKind.INT32,
    FieldDescriptor.TYPE_SFIXED32: FieldKind.INT32,
    FieldDescriptor.TYPE_UINT32: FieldKind.UINT32,
    FieldDescriptor.TYPE_FIXED32: FieldKind.UINT32,
    FieldDescriptor.TYPE_BOOL: FieldKind.BOOL,
    FieldDescriptor.TYPE_STRING: FieldKind.STRING,
    FieldDescriptor.TYPE_BYTES: FieldKind.BYTES,
    FieldDescriptor.TYPE_ENUM: FieldKind.ENUM,
    FieldDescriptor.TYPE_MESSAGE: FieldKind.MESSAGE,
    FieldDescriptor.TYPE_GROUP: FieldKind.MESSAGE,
}


class Cardinality(str, Enum):
    SINGULAR = "singular"
    REPEATED = "repeated"
    MAP = "map"


def _is_repeated(fd: FieldDescriptor) -> bool:
    flag = getattr(fd, "is_repeated", None)
    if flag is not None:
        return bool(flag)
    return fd.label == FieldDescriptor.LABEL_REPEATED


def _is_map_entry(descriptor: Optional[Descriptor]) -> bool:
    return descriptor is not None and descriptor.GetOptions().map_entry


@dataclass(frozen=True)
class FieldSchema:
    descriptor: FieldDescriptor

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def full_name(self) -> str:
        return self.descriptor.full_name

    @property
    def kind(self) -> FieldKind:
        return _KIND_BY_TYPE[self.descriptor.type]

    @property
    def cardinality(self) -> Cardinality:
        if not _is_repeated(self.descriptor):
            return Cardinality.SINGULAR
        if _is_map_entry(self.descriptor.message_type):
            return Cardinality.MAP
        return Cardinality.REPEATED

    @property
    def message(self) -> Optional["MessageSchema"]:
        """Nested schema for message fields (the entry type for maps)."""
        if self.descriptor.message_type is None:
            return None
        return MessageSchema(self.descriptor.message_type)

    @property
    def map_key(self) -> Optional["FieldSchema"]:
        if self.cardinality is not Cardinality.MAP:
            return None
        return FieldSchema(self.descriptor.message_type.fields_by_name["key"])

    @property
    def map_value(self) -> Optional["FieldSchema"]:
        if self.cardinality is not Cardinality.MAP:
            return None
        return FieldSchema(self.descriptor.message_type.fields_by_name["value"])

    def enum_number(self, value_name: str) -> Optional[int]:
        enum_type = self.descriptor.enum_type
        if enum_type is None:
            return None
        value = enum_type.values_by_name.get(value_name)
        return value.number if value is not None else None


@dataclass(frozen=True)
class MessageSchema:
    descriptor: Descriptor

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def full_name(self) -> str:
        return self.descriptor.full_name

    @property
    def fields(self) -> tuple[FieldSchema, ...]:
        return tuple(FieldSchema(fd) for fd in self.descriptor.fields)

    def find_field(self, name: str) -> Optional[FieldSchema]:
        fd = self.descriptor.fields_by_name.get(name)
        return FieldSchema(fd) if fd is not None else None

    def new_message(self) -> Message:
        return message_factory.GetMessageClass(self.descriptor)()


@dataclass(frozen=True)
class MethodSchema:
    descriptor: MethodDescriptor

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def full_name(self) -> str:
        return self.descriptor.full_name

    @property
    def service(self) -> str:
        return self.descriptor.containing_service.full_name

    @property
    def path(self) -> str:
        """Wire path used by the channel, e.g. ``/pkg.Service/Method``."""
        return f"/{self.service}/{self.name}"

    @property
    def input(self) -> MessageSchema:
        return MessageSchema(self.descriptor.input_type)

    @property
    def output(self) -> MessageSchema:
        return MessageSchema(self.descriptor.output_type)

    @property
    def is_unary(self) -> bool:
        proto = descriptor_pb2.MethodDescriptorProto()
        self.descriptor.CopyToProto(proto)
        return not (proto.client_streaming or proto.server_streaming)
