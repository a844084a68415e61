"""Resolve a method identifier against an inline .proto or a compiled protoset."""

from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Optional, Sequence, Union

from google.protobuf import (
    any_pb2,
    api_pb2,
    descriptor_pb2,
    descriptor_pool,
    duration_pb2,
    empty_pb2,
    field_mask_pb2,
    source_context_pb2,
    struct_pb2,
    timestamp_pb2,
    type_pb2,
    wrappers_pb2,
)
from google.protobuf.message import DecodeError
from grpc_tools import protoc

from .exceptions import SchemaError
from .logger import configure as configure_logger
from .schema import MethodSchema

LOGGER = configure_logger("labench_grpc.descriptors")

INLINE_PROTO_NAME = "labench_inline.proto"

# Files a protoset may import without bundling them.
WELL_KNOWN_FILES = {
    module.DESCRIPTOR.name: module.DESCRIPTOR
    for module in (
        any_pb2,
        api_pb2,
        descriptor_pb2,
        duration_pb2,
        empty_pb2,
        field_mask_pb2,
        source_context_pb2,
        struct_pb2,
        timestamp_pb2,
        type_pb2,
        wrappers_pb2,
    )
}


@dataclass(frozen=True)
class ProtoSource:
    """Inline .proto definition plus the directories its imports resolve against."""

    text: str
    import_paths: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ProtosetSource:
    """Serialized ``FileDescriptorSet`` (the output of ``protoc -o``)."""

    data: bytes


SchemaSource = Union[ProtoSource, ProtosetSource]


def select_schema_source(
    *,
    proto: Optional[str] = None,
    import_paths: Sequence[str] = (),
    protoset: Optional[bytes] = None,
) -> SchemaSource:
    if proto and protoset:
        raise SchemaError("both a proto definition and a protoset were given; pick one")
    if proto:
        return ProtoSource(text=proto, import_paths=tuple(str(path) for path in import_paths))
    if protoset:
        return ProtosetSource(data=protoset)
    raise SchemaError("couldn't parse proto type: no proto definition or protoset given")


def split_call(call: str) -> tuple[str, str]:
    """Split ``pkg.Service/Method`` or ``pkg.Service.Method`` into service and method."""
    normalized = call.strip().lstrip("/")
    if "/" in normalized:
        service, _, method = normalized.rpartition("/")
    else:
        service, _, method = normalized.rpartition(".")
    if not service or not method:
        raise SchemaError(f"invalid call {call!r}: expected package.Service/Method")
    return service, method


def resolve_method(call: str, source: SchemaSource) -> MethodSchema:
    service_name, method_name = split_call(call)
    if isinstance(source, ProtoSource):
        descriptor_set = _compile_proto(call, source)
    elif isinstance(source, ProtosetSource):
        descriptor_set = _decode_protoset(call, source.data)
    else:  # pragma: no cover
        raise SchemaError(f"unsupported schema source {source!r}")

    pool = _build_pool(call, descriptor_set)
    try:
        service = pool.FindServiceByName(service_name)
    except KeyError as exc:
        raise SchemaError(f"service {service_name} not found for call {call}") from exc
    method = service.methods_by_name.get(method_name)
    if method is None:
        raise SchemaError(f"method {method_name} not found in service {service_name} for call {call}")

    schema = MethodSchema(method)
    if not schema.is_unary:
        raise SchemaError(f"call {call} is a streaming method; only unary calls are supported")
    LOGGER.info(
        "resolved %s: %s -> %s",
        schema.path,
        schema.input.full_name,
        schema.output.full_name,
    )
    return schema


def _well_known_include() -> str:
    return str(resources.files("grpc_tools") / "_proto")


def _compile_proto(call: str, source: ProtoSource) -> descriptor_pb2.FileDescriptorSet:
    with tempfile.TemporaryDirectory(prefix="labench-proto-") as scratch:
        scratch_dir = Path(scratch)
        proto_file = scratch_dir / INLINE_PROTO_NAME
        proto_file.write_text(source.text, encoding="utf-8")
        output = scratch_dir / "schema.protoset"

        args = ["grpc_tools.protoc", f"--proto_path={scratch_dir}"]
        args.extend(f"--proto_path={path}" for path in source.import_paths)
        args.append(f"--proto_path={_well_known_include()}")
        args.extend(["--include_imports", f"--descriptor_set_out={output}", str(proto_file)])

        LOGGER.debug("compiling inline proto for %s: %s", call, " ".join(args[1:]))
        status = protoc.main(args)
        if status != 0 or not output.exists():
            raise SchemaError(f"failed to parse proto definition for call {call} (protoc exit status {status})")
        return _decode_protoset(call, output.read_bytes())


def _decode_protoset(call: str, data: bytes) -> descriptor_pb2.FileDescriptorSet:
    descriptor_set = descriptor_pb2.FileDescriptorSet()
    try:
        descriptor_set.ParseFromString(data)
    except DecodeError as exc:
        raise SchemaError(f"failed to decode protoset for call {call}: {exc}") from exc
    if not descriptor_set.file:
        raise SchemaError(f"protoset for call {call} contains no files")
    return descriptor_set


def _build_pool(call: str, descriptor_set: descriptor_pb2.FileDescriptorSet) -> descriptor_pool.DescriptorPool:
    """Load every file into a private pool, dependencies first."""
    pool = descriptor_pool.DescriptorPool()
    by_name = {proto.name: proto for proto in descriptor_set.file}
    added: set[str] = set()

    def add(name: str, chain: tuple[str, ...]) -> None:
        if name in added:
            return
        if name in chain:
            raise SchemaError(f"import cycle through {name} for call {call}")
        proto = by_name.get(name)
        if proto is None:
            proto = _default_pool_file(call, name)
        for dependency in proto.dependency:
            add(dependency, chain + (name,))
        try:
            pool.AddSerializedFile(proto.SerializeToString())
        except (TypeError, ValueError) as exc:
            raise SchemaError(f"failed to load {name} for call {call}: {exc}") from exc
        added.add(name)

    for name in by_name:
        add(name, ())
    return pool


def _default_pool_file(call: str, name: str) -> descriptor_pb2.FileDescriptorProto:
    file_descriptor = WELL_KNOWN_FILES.get(name)
    if file_descriptor is None:
        try:
            file_descriptor = descriptor_pool.Default().FindFileByName(name)
        except KeyError as exc:
            raise SchemaError(f"dependency {name} missing from protoset for call {call}") from exc
    proto = descriptor_pb2.FileDescriptorProto()
    file_descriptor.CopyToProto(proto)
    return proto
