from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from labench_grpc.config import GrpcRequestConfig, load_config, parse_config
from labench_grpc.descriptors import ProtoSource, ProtosetSource
from labench_grpc.exceptions import ConfigError
from labench_grpc.payload import BinaryData, JsonData, StructuredData


def write_config(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "labench.yaml"
    path.write_text(textwrap.dedent(body))
    return path


def test_load_proto_config(tmp_path: Path, protos_dir: Path) -> None:
    path = write_config(
        tmp_path,
        f"""
        Protocol: GRPC
        RequestRatePerSec: 100
        GRPCRequest:
          Host: localhost:50051
          Call: labench.test.Echo/Say
          Proto: {protos_dir / "bench.proto"}
          ShareChannel: true
          Header:
            Authorization: Bearer token
          Data:
            id: 7
            items_by_id:
              1:
                name: one
        """,
    )
    config = load_config(path)
    assert config.host == "localhost:50051"
    assert config.share_channel is True
    assert config.data["items_by_id"] == {1: {"name": "one"}}

    factory = config.to_factory()
    assert isinstance(factory.schema, ProtoSource)
    assert factory.schema.import_paths[0] == str(protos_dir)
    assert factory.share_channel is True
    assert factory.headers == (("authorization", "Bearer token"),)

    message = factory.payloads()[0].message()
    assert message.id == 7
    assert message.items_by_id[1].name == "one"


def test_header_values_are_stringified(tmp_path: Path, protos_dir: Path) -> None:
    path = write_config(
        tmp_path,
        f"""
        Protocol: GRPC
        GRPCRequest:
          Host: localhost:50051
          Call: labench.test.Echo/Say
          Proto: {protos_dir / "bench.proto"}
          Header:
            X-Run: 42
            X-Dry: true
        """,
    )
    factory = load_config(path).to_factory()
    assert factory.headers == (("x-run", "42"), ("x-dry", "True"))


def test_relative_protoset_path(tmp_path: Path, protoset_bytes: bytes) -> None:
    (tmp_path / "schemas").mkdir()
    (tmp_path / "schemas" / "bench.protoset").write_bytes(protoset_bytes)
    path = write_config(
        tmp_path,
        """
        GRPCRequest:
          Host: localhost:50051
          Call: labench.test.Echo/Say
          Protoset: schemas/bench.protoset
          DataJSON: '{"id": 3}'
        """,
    )
    factory = load_config(path).to_factory()
    assert factory.schema == ProtosetSource(protoset_bytes)
    assert factory.data == JsonData('{"id": 3}')
    assert factory.method().path == "/labench.test.Echo/Say"


def test_payload_source_selection() -> None:
    base = {"Host": "h:1", "Call": "a.B/C", "Protoset": "x.protoset"}
    assert GrpcRequestConfig.model_validate(base).payload_source() == StructuredData(None)
    assert GrpcRequestConfig.model_validate({**base, "DataBin": b"\x08\x01"}).payload_source() == BinaryData(
        b"\x08\x01"
    )


@pytest.mark.parametrize(
    "section, message",
    [
        ({"Host": "h:1", "Call": "a.B/C"}, "exactly one of Proto or Protoset"),
        ({"Host": "h:1", "Call": "a.B/C", "Proto": "a.proto", "Protoset": "b.protoset"}, "exactly one"),
        (
            {"Host": "h:1", "Call": "a.B/C", "Proto": "a.proto", "Data": {}, "DataJSON": "{}"},
            "only one of Data, DataJSON or DataBin",
        ),
        ({"Host": " ", "Call": "a.B/C", "Proto": "a.proto"}, "must not be empty"),
        ({"Host": "h:1", "Call": "a.B/C", "Proto": "a.proto", "Bogus": 1}, "Bogus"),
        ({"Host": "h:1", "Call": "a.B/C", "Proto": "a.proto", "ConnectTimeout": 0}, "ConnectTimeout"),
    ],
)
def test_invalid_sections(section: dict, message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        parse_config({"GRPCRequest": section})


def test_missing_section() -> None:
    with pytest.raises(ConfigError, match="didn't provide the request information"):
        parse_config({"Protocol": "GRPC"})


def test_wrong_protocol() -> None:
    with pytest.raises(ConfigError, match="HTTP/2"):
        parse_config({"Protocol": "HTTP/2", "GRPCRequest": {}})


def test_unreadable_proto(tmp_path: Path) -> None:
    config = parse_config(
        {"GRPCRequest": {"Host": "h:1", "Call": "a.B/C", "Proto": "missing.proto"}},
        base_dir=tmp_path,
    )
    with pytest.raises(ConfigError, match="couldn't read schema for a.B/C"):
        config.to_factory()


def test_unparseable_yaml(tmp_path: Path) -> None:
    path = write_config(tmp_path, "GRPCRequest: [unclosed\n")
    with pytest.raises(ConfigError, match="couldn't parse configuration"):
        load_config(path)
