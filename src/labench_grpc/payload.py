"""Build request payloads from loosely-typed configuration values.

Three input modes are supported, chosen once when the factory is configured:

* ``StructuredData`` walks a mapping (typically straight out of YAML) against
  the request schema field by field, coercing each value to what the declared
  field type accepts.
* ``JsonData`` hands a JSON document to protobuf's own JSON parser.
* ``BinaryData`` takes bytes that are already in protobuf wire format.

Whatever the mode, the result is a ``Payload``: the deterministic wire encoding
of the message. It is built once per factory and read concurrently by every
requester, so it is stored as bytes and never mutated.
"""

from __future__ import annotations

import json
import math
import re
import struct
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from google.protobuf import json_format
from google.protobuf.message import DecodeError, Message

from .exceptions import FieldNotFound, PayloadError, TypeMismatch
from .schema import Cardinality, FieldKind, FieldSchema, MessageSchema

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

_JSON_UNKNOWN_FIELD = re.compile(r'Message type "([^"]+)" has no field named "([^"]+)"')


@dataclass(frozen=True)
class StructuredData:
    """A mapping (or a list of mappings) of field names to generic values."""

    value: Any


@dataclass(frozen=True)
class JsonData:
    """A JSON object (or array of objects) using protobuf JSON mapping rules."""

    text: str


@dataclass(frozen=True)
class BinaryData:
    """A message already serialized in protobuf wire format."""

    data: bytes


PayloadSource = Union[StructuredData, JsonData, BinaryData]


@dataclass(frozen=True)
class Payload:
    schema: MessageSchema
    data: bytes

    def message(self) -> Message:
        """Decode a fresh, caller-owned copy of the payload message."""
        message = self.schema.new_message()
        message.ParseFromString(self.data)
        return message

    def to_json(self) -> str:
        return json_format.MessageToJson(self.message(), preserving_proto_field_name=True)


def build_payload(schema: MessageSchema, source: PayloadSource) -> Payload:
    payloads = build_payloads(schema, source)
    if len(payloads) != 1:
        raise PayloadError(f"expected a single {schema.full_name} payload, got {len(payloads)}")
    return payloads[0]


def build_payloads(schema: MessageSchema, source: PayloadSource) -> tuple[Payload, ...]:
    """Build every payload described by ``source``.

    Arrays (a JSON array in text mode, a list of mappings in structured mode)
    produce one payload per element; anything else produces exactly one.
    """
    if isinstance(source, StructuredData):
        messages = _messages_from_structured(schema, source.value)
    elif isinstance(source, JsonData):
        messages = _messages_from_json(schema, source.text)
    elif isinstance(source, BinaryData):
        messages = [_message_from_binary(schema, source.data)]
    else:  # pragma: no cover
        raise PayloadError(f"unsupported payload source {source!r}")

    if not messages:
        raise PayloadError(f"no payloads given for {schema.full_name}")
    return tuple(
        Payload(schema=schema, data=message.SerializeToString(deterministic=True))
        for message in messages
    )


def message_from_mapping(schema: MessageSchema, data: Mapping[str, Any]) -> Message:
    message = schema.new_message()
    for name, value in data.items():
        field = schema.find_field(name)
        if field is None:
            raise FieldNotFound(str(name), schema.name)

        if field.cardinality is Cardinality.MAP:
            _put_map_entries(message, field, value)
        elif field.cardinality is Cardinality.REPEATED:
            _add_repeated(message, field, value)
        elif value is not None:
            _set_singular(message, field, reify(field, value))
    return message


def reify(field: FieldSchema, value: Any) -> Any:
    """Coerce a generic value into what ``field`` accepts on assignment."""
    if field.kind is FieldKind.MESSAGE:
        if not isinstance(value, Mapping):
            raise TypeMismatch(field.full_name, f"expected a mapping, got {type(value).__name__}")
        nested = field.message
        assert nested is not None
        return message_from_mapping(nested, {_canonical_key(k): v for k, v in value.items()})

    if field.kind is FieldKind.ENUM and isinstance(value, str):
        number = field.enum_number(value)
        if number is None:
            raise TypeMismatch(field.full_name, f"unknown enum value {value!r}")
        return number

    if field.kind in (FieldKind.INT32, FieldKind.ENUM) and _is_integer(value):
        if not INT32_MIN <= value <= INT32_MAX:
            raise TypeMismatch(field.full_name, f"{value} does not fit in a 32-bit integer")
        return int(value)

    # Both float and double narrow to single precision; overflow becomes inf.
    if field.kind in (FieldKind.FLOAT, FieldKind.DOUBLE) and isinstance(value, float):
        return narrow_float(value)

    return value


def _messages_from_structured(schema: MessageSchema, value: Any) -> list[Message]:
    if value is None:
        return [schema.new_message()]
    if isinstance(value, Mapping):
        return [message_from_mapping(schema, _stringify_keys(value))]
    if isinstance(value, (list, tuple)):
        messages = []
        for index, item in enumerate(value):
            if not isinstance(item, Mapping):
                raise TypeMismatch(f"{schema.full_name}[{index}]", "each payload must be a mapping")
            messages.append(message_from_mapping(schema, _stringify_keys(item)))
        return messages
    raise TypeMismatch(schema.full_name, f"payload must be a mapping, got {type(value).__name__}")


def _messages_from_json(schema: MessageSchema, text: str) -> list[Message]:
    if text.lstrip().startswith("["):
        try:
            items = json.loads(text)
        except json.JSONDecodeError as exc:
            raise PayloadError(f"error unmarshalling payload for {schema.full_name}: {exc}") from exc
        return [_parse_json(schema, json.dumps(item)) for item in items]
    return [_parse_json(schema, text)]


def _parse_json(schema: MessageSchema, text: str) -> Message:
    message = schema.new_message()
    try:
        json_format.Parse(text, message)
    except json_format.ParseError as exc:
        detail = str(exc)
        unknown = _JSON_UNKNOWN_FIELD.search(detail)
        if unknown is not None:
            owner, field = unknown.groups()
            raise FieldNotFound(field, owner.rsplit(".", 1)[-1]) from exc
        raise PayloadError(f"error creating {schema.full_name} from JSON: {detail}") from exc
    return message


def _message_from_binary(schema: MessageSchema, data: bytes) -> Message:
    message = schema.new_message()
    try:
        message.ParseFromString(bytes(data))
    except DecodeError as exc:
        raise PayloadError(f"error decoding binary {schema.full_name}: {exc}") from exc
    return message


def _put_map_entries(message: Message, field: FieldSchema, value: Any) -> None:
    if not isinstance(value, Mapping):
        raise TypeMismatch(field.full_name, "field is a map, please give it as a map")
    key_field, value_field = field.map_key, field.map_value
    assert key_field is not None and value_field is not None
    container = getattr(message, field.name)
    for raw_key, raw_value in value.items():
        key = reify(key_field, raw_key)
        entry = reify(value_field, raw_value)
        try:
            if value_field.kind is FieldKind.MESSAGE:
                container[key].CopyFrom(entry)
            else:
                container[key] = entry
        except (TypeError, ValueError, OverflowError) as exc:
            raise TypeMismatch(field.full_name, str(exc)) from exc


def _add_repeated(message: Message, field: FieldSchema, value: Any) -> None:
    if not isinstance(value, (list, tuple)):
        raise TypeMismatch(field.full_name, "field is repeated, make sure it's a list")
    container = getattr(message, field.name)
    for item in value:
        entry = reify(field, item)
        try:
            if field.kind is FieldKind.MESSAGE:
                container.add().CopyFrom(entry)
            else:
                container.append(entry)
        except (TypeError, ValueError, OverflowError) as exc:
            raise TypeMismatch(field.full_name, str(exc)) from exc


def _set_singular(message: Message, field: FieldSchema, value: Any) -> None:
    try:
        if field.kind is FieldKind.MESSAGE:
            getattr(message, field.name).CopyFrom(value)
        else:
            setattr(message, field.name, value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise TypeMismatch(field.full_name, str(exc)) from exc


def narrow_float(value: float) -> float:
    try:
        return struct.unpack("f", struct.pack("f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _canonical_key(key: Any) -> str:
    if isinstance(key, bool):
        return "true" if key else "false"
    return str(key)


def _stringify_keys(data: Mapping[Any, Any]) -> dict[str, Any]:
    return {_canonical_key(key): value for key, value in data.items()}
