import grpc

from labench_grpc.exceptions import (
    FieldNotFound,
    LabenchError,
    PayloadError,
    TransportError,
    TypeMismatch,
)


def test_payload_errors_share_a_base() -> None:
    assert issubclass(FieldNotFound, PayloadError)
    assert issubclass(TypeMismatch, PayloadError)
    assert issubclass(PayloadError, LabenchError)


def test_type_mismatch_names_field() -> None:
    error = TypeMismatch("pkg.Req.id", "9999999999 does not fit in a 32-bit integer")
    assert str(error) == "field pkg.Req.id: 9999999999 does not fit in a 32-bit integer"


def test_transport_error_from_rpc_error() -> None:
    class FakeRpcError(grpc.RpcError):
        def code(self) -> grpc.StatusCode:
            return grpc.StatusCode.DEADLINE_EXCEEDED

        def details(self) -> str:
            return "deadline exceeded"

    error = TransportError.from_rpc_error("pkg.Svc.Call", FakeRpcError())
    assert error.code is grpc.StatusCode.DEADLINE_EXCEEDED
    assert error.details == "deadline exceeded"
    assert str(error) == "pkg.Svc.Call failed: DEADLINE_EXCEEDED: deadline exceeded"
