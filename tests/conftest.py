from __future__ import annotations

from concurrent import futures
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

import grpc
import pytest
from google.protobuf import descriptor_pb2

from labench_grpc.descriptors import ProtoSource, resolve_method
from labench_grpc.schema import MessageSchema, MethodSchema

PROTOS_DIR = Path(__file__).resolve().parent / "protos"
ECHO_CALL = "labench.test.Echo/Say"


@pytest.fixture(scope="session")
def protos_dir() -> Path:
    return PROTOS_DIR


@pytest.fixture(scope="session")
def proto_source() -> ProtoSource:
    return ProtoSource(
        text=(PROTOS_DIR / "bench.proto").read_text(),
        import_paths=(str(PROTOS_DIR),),
    )


@pytest.fixture(scope="session")
def echo_method(proto_source: ProtoSource) -> MethodSchema:
    return resolve_method(ECHO_CALL, proto_source)


@pytest.fixture(scope="session")
def echo_request(echo_method: MethodSchema) -> MessageSchema:
    return echo_method.input


@pytest.fixture(scope="session")
def protoset_bytes(echo_method: MethodSchema) -> bytes:
    """Serialized FileDescriptorSet equivalent to ``protoc -o --include_imports``."""
    descriptor_set = descriptor_pb2.FileDescriptorSet()
    seen: set[str] = set()

    def add(file_descriptor) -> None:
        if file_descriptor.name in seen:
            return
        for dependency in file_descriptor.dependencies:
            add(dependency)
        proto = descriptor_set.file.add()
        file_descriptor.CopyToProto(proto)
        seen.add(file_descriptor.name)

    add(echo_method.descriptor.containing_service.file)
    return descriptor_set.SerializeToString()


@dataclass
class EchoServer:
    address: str
    requests: list[bytes] = field(default_factory=list)
    metadata: list[dict[str, str]] = field(default_factory=list)
    fail_with: grpc.StatusCode | None = None


@pytest.fixture
def echo_server() -> Iterator[EchoServer]:
    """In-process server for the Echo service working on raw bytes."""
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=4))
    port = server.add_insecure_port("127.0.0.1:0")
    state = EchoServer(address=f"127.0.0.1:{port}")

    def say(request: bytes, context: grpc.ServicerContext) -> bytes:
        state.requests.append(request)
        state.metadata.append({key: value for key, value in context.invocation_metadata()})
        context.send_initial_metadata((("x-echo-server", "labench"),))
        if state.fail_with is not None:
            context.abort(state.fail_with, "rejected by test server")
        return b""

    handler = grpc.method_handlers_generic_handler(
        "labench.test.Echo",
        {
            "Say": grpc.unary_unary_rpc_method_handler(
                say, request_deserializer=None, response_serializer=None
            )
        },
    )
    server.add_generic_rpc_handlers((handler,))
    server.start()
    try:
        yield state
    finally:
        server.stop(grace=None)


class FakeCall:
    def initial_metadata(self) -> tuple[tuple[str, str], ...]:
        return (("x-fake", "1"),)


class FakeStub:
    def __init__(self, channel: "FakeChannel", path: str) -> None:
        self.channel = channel
        self.path = path
        self.calls: list[tuple[bytes, float | None, tuple]] = []

    def with_call(self, request: bytes, timeout=None, metadata=None):
        self.calls.append((request, timeout, metadata))
        return b"", FakeCall()


class FakeChannel:
    def __init__(self, target: str) -> None:
        self.target = target
        self.closed = False

    def unary_unary(self, path: str, request_serializer=None, response_deserializer=None) -> FakeStub:
        return FakeStub(self, path)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_channels(monkeypatch: pytest.MonkeyPatch) -> list[FakeChannel]:
    created: list[FakeChannel] = []

    def fake_insecure_channel(target: str) -> FakeChannel:
        channel = FakeChannel(target)
        created.append(channel)
        return channel

    monkeypatch.setattr(grpc, "insecure_channel", fake_insecure_channel)
    return created
