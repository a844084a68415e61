"""gRPC requester factory and per-worker requesters.

The benchmark engine builds one ``GrpcRequesterFactory`` per run and calls
``get_requester`` once for every simulated client, typically from many threads
at once. The method descriptor, the payloads and (when the channel is shared)
the channel are each resolved exactly once no matter how many workers race on
the first call; afterwards handing out another requester costs a dial at most.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Mapping, Optional

import grpc

from .descriptors import SchemaSource, resolve_method
from .exceptions import TransportError
from .lazy import LazyCell
from .logger import configure as configure_logger
from .payload import Payload, PayloadSource, StructuredData, build_payloads
from .schema import MethodSchema

LOGGER = configure_logger("labench_grpc.requester")

Metadata = tuple[tuple[str, Any], ...]


def normalize_headers(headers: Optional[Mapping[str, Any]]) -> Metadata:
    """gRPC metadata keys are lowercase; ``-bin`` keys carry bytes."""
    items = []
    for key, value in (headers or {}).items():
        name = str(key).lower()
        if name.endswith("-bin"):
            if isinstance(value, str):
                value = value.encode("utf-8")
        else:
            value = str(value)
        items.append((name, value))
    return tuple(items)


@dataclass(frozen=True)
class CallContext:
    metadata: Metadata
    timeout: Optional[float] = None


class GrpcRequester:
    """Issues unary calls for a single worker. Not safe to share between workers."""

    def __init__(
        self,
        stub: grpc.UnaryUnaryMultiCallable,
        method: MethodSchema,
        payload: Payload,
        headers: Metadata,
    ) -> None:
        self.stub = stub
        self.method = method
        self.payload = payload
        self.headers = headers
        self.response_headers: Metadata = ()
        self._context: Optional[CallContext] = None

    @property
    def context(self) -> Optional[CallContext]:
        return self._context

    def setup(self, timeout: Optional[float] = None) -> None:
        self._context = CallContext(metadata=self.headers, timeout=timeout)

    def request(self) -> None:
        context = self._context
        if context is None:
            raise RuntimeError("setup() must be called before request()")
        try:
            _, call = self.stub.with_call(
                self.payload.data,
                timeout=context.timeout,
                metadata=context.metadata,
            )
        except grpc.RpcError as exc:
            self.response_headers = _initial_metadata(exc)
            raise TransportError.from_rpc_error(self.method.full_name, exc) from exc
        self.response_headers = _initial_metadata(call)

    def teardown(self) -> None:
        return None


def _initial_metadata(call: Any) -> Metadata:
    getter = getattr(call, "initial_metadata", None)
    if not callable(getter):
        return ()
    return tuple(getter() or ())


def _dial(host: str, connect_timeout: Optional[float]) -> grpc.Channel:
    channel = grpc.insecure_channel(host)
    if connect_timeout is None:
        return channel
    try:
        grpc.channel_ready_future(channel).result(timeout=connect_timeout)
    except grpc.FutureTimeoutError as exc:
        channel.close()
        raise TransportError(f"couldn't connect to {host} within {connect_timeout}s") from exc
    return channel


class GrpcRequesterFactory:
    def __init__(
        self,
        host: str,
        call: str,
        schema: SchemaSource,
        data: Optional[PayloadSource] = None,
        *,
        headers: Optional[Mapping[str, Any]] = None,
        share_channel: bool = False,
        connect_timeout: Optional[float] = None,
        resolver: Callable[[str, SchemaSource], MethodSchema] = resolve_method,
    ) -> None:
        self.host = host
        self.call = call
        self.schema = schema
        self.data = data if data is not None else StructuredData(None)
        self.headers = normalize_headers(headers)
        self.share_channel = share_channel
        self.connect_timeout = connect_timeout
        self._resolver = resolver

        self._method: LazyCell[MethodSchema] = LazyCell("method")
        self._payloads: LazyCell[tuple[Payload, ...]] = LazyCell("payloads")
        self._channel: LazyCell[grpc.Channel] = LazyCell("channel")
        self._owned_channels: list[grpc.Channel] = []
        self._owned_lock = Lock()

    def __enter__(self) -> "GrpcRequesterFactory":
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.close()

    def method(self) -> MethodSchema:
        return self._method.get(self._resolve_method)

    def payloads(self) -> tuple[Payload, ...]:
        return self._payloads.get(self._build_payloads)

    def get_channel(self, reuse: bool) -> grpc.Channel:
        if not reuse:
            return self._open_channel()
        return self._channel.get(self._open_channel)

    def get_requester(self, worker_index: int = 0) -> GrpcRequester:
        """Return a new requester; called once for each benchmark connection."""
        method = self.method()
        payloads = self.payloads()
        channel = self.get_channel(self.share_channel)
        stub = channel.unary_unary(
            method.path,
            request_serializer=None,
            response_deserializer=None,
        )
        payload = payloads[worker_index % len(payloads)]
        LOGGER.debug(
            "requester %s ready for %s (payload %s of %s, shared channel=%s)",
            worker_index,
            method.path,
            worker_index % len(payloads),
            len(payloads),
            self.share_channel,
        )
        return GrpcRequester(stub=stub, method=method, payload=payload, headers=self.headers)

    def close(self) -> None:
        self._channel.clear()
        with self._owned_lock:
            channels, self._owned_channels = self._owned_channels, []
        for channel in channels:
            channel.close()
        if channels:
            LOGGER.info("closed %s channel(s) to %s", len(channels), self.host)

    def _resolve_method(self) -> MethodSchema:
        return self._resolver(self.call, self.schema)

    def _build_payloads(self) -> tuple[Payload, ...]:
        method = self.method()
        payloads = build_payloads(method.input, self.data)
        LOGGER.info("built %s payload(s) for %s", len(payloads), method.input.full_name)
        return payloads

    def _open_channel(self) -> grpc.Channel:
        LOGGER.info("dialing %s", self.host)
        channel = _dial(self.host, self.connect_timeout)
        with self._owned_lock:
            self._owned_channels.append(channel)
        return channel
