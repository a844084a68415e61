"""YAML configuration for the gRPC requester.

Reads the ``GRPCRequest`` section of a labench configuration file::

    Protocol: GRPC
    GRPCRequest:
      Host: localhost:50051
      Call: helloworld.Greeter/SayHello
      Proto: protos/helloworld.proto
      ShareChannel: true
      Header:
        authorization: Bearer token
      Data:
        name: labench

``Proto`` and ``Protoset`` are paths relative to the configuration file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .descriptors import select_schema_source
from .exceptions import ConfigError
from .payload import BinaryData, JsonData, PayloadSource, StructuredData
from .requester import GrpcRequesterFactory

SECTION = "GRPCRequest"


class GrpcRequestConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    host: str = Field(alias="Host")
    call: str = Field(alias="Call")
    share_channel: bool = Field(default=False, alias="ShareChannel")
    data: Any = Field(default=None, alias="Data")
    data_json: Optional[str] = Field(default=None, alias="DataJSON")
    data_bin: Optional[bytes] = Field(default=None, alias="DataBin")
    header: dict[str, Any] = Field(default_factory=dict, alias="Header")
    proto: Optional[Path] = Field(default=None, alias="Proto")
    protoset: Optional[Path] = Field(default=None, alias="Protoset")
    import_paths: list[Path] = Field(default_factory=list, alias="ImportPaths")
    connect_timeout: Optional[float] = Field(default=None, gt=0, alias="ConnectTimeout")
    base_dir: Path = Field(default=Path("."), exclude=True)

    @field_validator("host", "call")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @model_validator(mode="after")
    def _exclusive_sources(self) -> "GrpcRequestConfig":
        if (self.proto is None) == (self.protoset is None):
            raise ValueError("exactly one of Proto or Protoset must be given")
        given = [
            name
            for name, value in (
                ("Data", self.data),
                ("DataJSON", self.data_json),
                ("DataBin", self.data_bin),
            )
            if value is not None
        ]
        if len(given) > 1:
            raise ValueError(f"only one of Data, DataJSON or DataBin may be given (got {', '.join(given)})")
        return self

    def payload_source(self) -> PayloadSource:
        if self.data_json is not None:
            return JsonData(self.data_json)
        if self.data_bin is not None:
            return BinaryData(self.data_bin)
        return StructuredData(self.data)

    def to_factory(self) -> GrpcRequesterFactory:
        import_paths = [str(self._resolve(path)) for path in self.import_paths]
        try:
            if self.proto is not None:
                proto_path = self._resolve(self.proto)
                schema = select_schema_source(
                    proto=proto_path.read_text(encoding="utf-8"),
                    import_paths=[str(proto_path.parent), *import_paths],
                )
            else:
                assert self.protoset is not None
                schema = select_schema_source(protoset=self._resolve(self.protoset).read_bytes())
        except OSError as exc:
            raise ConfigError(f"couldn't read schema for {self.call}: {exc}") from exc

        return GrpcRequesterFactory(
            host=self.host,
            call=self.call,
            schema=schema,
            data=self.payload_source(),
            headers=self.header,
            share_channel=self.share_channel,
            connect_timeout=self.connect_timeout,
        )

    def _resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self.base_dir / path


def parse_config(document: Any, base_dir: Union[str, Path] = ".") -> GrpcRequestConfig:
    if not isinstance(document, dict):
        raise ConfigError("configuration must be a mapping")
    protocol = document.get("Protocol")
    if protocol is not None and protocol != "GRPC":
        raise ConfigError(f"protocol {protocol!r} is not GRPC")
    section = document.get(SECTION)
    if section is None:
        raise ConfigError("tried to use GRPC but didn't provide the request information")
    if not isinstance(section, dict):
        raise ConfigError(f"{SECTION} must be a mapping")
    try:
        return GrpcRequestConfig.model_validate({**section, "base_dir": Path(base_dir)})
    except ValidationError as exc:
        raise ConfigError(f"invalid {SECTION} configuration:\n{exc}") from exc


def load_config(path: Union[str, Path]) -> GrpcRequestConfig:
    config_path = Path(path)
    try:
        document = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"couldn't read configuration {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"couldn't parse configuration {config_path}: {exc}") from exc
    return parse_config(document, base_dir=config_path.parent)
