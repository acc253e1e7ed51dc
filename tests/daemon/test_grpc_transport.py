"""
Tests for the gRPC daemon transport.

The grpc channel is mocked; requests and replies are real protobuf
messages from the runtime descriptor pool.
"""
import pytest
from unittest.mock import MagicMock, patch

grpc = pytest.importorskip("grpc")
pytest.importorskip("google.protobuf")

from mpe_sdk.daemon import proto
from mpe_sdk.daemon.grpc_transport import GrpcDaemonTransport, decode_big_int, encode_channel_id
from mpe_sdk.exceptions import DaemonConnectionError, DaemonRpcError, DaemonTimeoutError


class FakeRpcError(grpc.RpcError):

    def __init__(self, code, details="failure"):
        self._code = code
        self._details = details

    def code(self):
        return self._code

    def details(self):
        return self._details


@pytest.fixture
def rpcs():
    return {
        proto.GET_CHANNEL_STATE_METHOD: MagicMock(),
        proto.GET_FREE_CALLS_AVAILABLE_METHOD: MagicMock(),
        proto.GET_FREE_CALL_TOKEN_METHOD: MagicMock(),
        proto.GET_TOKEN_METHOD: MagicMock(),
    }


@pytest.fixture
def mock_channel(rpcs):
    channel = MagicMock()
    channel.unary_unary.side_effect = lambda method, **kwargs: rpcs[method]
    return channel


@pytest.fixture
def transport(mock_channel, monkeypatch):
    monkeypatch.delenv("MPE_DAEMON_TIMEOUT", raising=False)
    transport = GrpcDaemonTransport()
    with patch("mpe_sdk.daemon.grpc_transport.grpc.insecure_channel", return_value=mock_channel):
        transport.initialize("http://localhost:7000")
    return transport


def test_channel_id_encoding():
    assert encode_channel_id(1) == b"\x00\x00\x00\x01"
    assert encode_channel_id(258) == b"\x00\x00\x01\x02"


def test_big_int_decoding():
    assert decode_big_int(b"") == 0
    assert decode_big_int(b"\x01\x00") == 256


class TestInitialize:

    def test_insecure_channel_for_local_http(self, transport, mock_channel):
        assert transport.is_available() is True
        assert transport.endpoint == "http://localhost:7000"
        assert mock_channel.unary_unary.call_count == 4

    def test_secure_channel_for_https(self, mock_channel, monkeypatch):
        monkeypatch.delenv("MPE_DAEMON_CA", raising=False)
        transport = GrpcDaemonTransport()
        with patch("mpe_sdk.daemon.grpc_transport.grpc.ssl_channel_credentials") as mock_creds, \
             patch("mpe_sdk.daemon.grpc_transport.grpc.secure_channel",
                   return_value=mock_channel) as mock_secure:
            transport.initialize("https://daemon.example.com:8080")

        mock_creds.assert_called_once_with()
        assert mock_secure.call_args[0][0] == "daemon.example.com:8080"

    def test_rejects_insecure_remote_endpoint(self, monkeypatch):
        monkeypatch.delenv("MPE_ALLOW_INSECURE", raising=False)
        with pytest.raises(ValueError):
            GrpcDaemonTransport().initialize("http://daemon.example.com")

    def test_channel_creation_failure(self):
        transport = GrpcDaemonTransport()
        with patch("mpe_sdk.daemon.grpc_transport.grpc.insecure_channel",
                   side_effect=RuntimeError("bad target")):
            with pytest.raises(DaemonConnectionError):
                transport.initialize("http://localhost:7000")

    def test_not_initialized(self):
        with pytest.raises(DaemonConnectionError):
            GrpcDaemonTransport().get_channel_state(1, b"sig", 10)


class TestRpcs:

    def test_get_channel_state(self, transport, rpcs):
        rpc = rpcs[proto.GET_CHANNEL_STATE_METHOD]
        rpc.return_value = proto.ChannelStateReply(
            current_nonce=b"\x02",
            current_signed_amount=(300).to_bytes(2, "big"),
        )

        state = transport.get_channel_state(7, b"sig", 120)

        request = rpc.call_args[0][0]
        assert request.channel_id == b"\x00\x00\x00\x07"
        assert request.signature == b"sig"
        assert request.current_block == 120
        assert rpc.call_args[1]["timeout"] == 10
        assert (state.current_nonce, state.current_signed_amount) == (2, 300)

    def test_empty_channel_state(self, transport, rpcs):
        rpcs[proto.GET_CHANNEL_STATE_METHOD].return_value = proto.ChannelStateReply()
        state = transport.get_channel_state(7, b"sig", 120, timeout=3)
        assert (state.current_nonce, state.current_signed_amount) == (0, 0)
        assert rpcs[proto.GET_CHANNEL_STATE_METHOD].call_args[1]["timeout"] == 3

    def test_get_free_calls_available(self, transport, rpcs):
        rpc = rpcs[proto.GET_FREE_CALLS_AVAILABLE_METHOD]
        rpc.return_value = proto.FreeCallStateReply(free_calls_available=4)

        assert transport.get_free_calls_available("0xabc", b"\xbe\xef", b"sig", 99) == 4
        request = rpc.call_args[0][0]
        assert request.address == "0xabc"
        assert request.free_call_token == b"\xbe\xef"
        assert request.user_id == ""

    def test_get_free_call_token_from_bytes(self, transport, rpcs):
        rpcs[proto.GET_FREE_CALL_TOKEN_METHOD].return_value = proto.FreeCallToken(
            token=b"\xbe\xef", token_expiration_block=900
        )
        token = transport.get_free_call_token("0xabc", b"sig", 99)
        assert token.token_hex == "beef"
        assert token.expiration_block == 900

    def test_get_free_call_token_prefers_hex(self, transport, rpcs):
        rpcs[proto.GET_FREE_CALL_TOKEN_METHOD].return_value = proto.FreeCallToken(
            token=b"\x00", token_hex="cafe", token_expiration_block=900
        )
        assert transport.get_free_call_token("0xabc", b"sig", 99).token_hex == "cafe"

    def test_get_token(self, transport, rpcs):
        rpc = rpcs[proto.GET_TOKEN_METHOD]
        rpc.return_value = proto.TokenReply(token="tok", planned_amount=200, used_amount=50)

        token = transport.get_token(7, 1, 200, b"outer", 120, b"claim")

        request = rpc.call_args[0][0]
        assert (request.channel_id, request.current_nonce, request.signed_amount) == (7, 1, 200)
        assert request.claim_signature == b"claim"
        assert token.channel_id == 7
        assert (token.token, token.planned_amount, token.used_amount) == ("tok", 200, 50)


class TestErrorMapping:

    @pytest.mark.parametrize("code, error_class", [
        (grpc.StatusCode.DEADLINE_EXCEEDED, DaemonTimeoutError),
        (grpc.StatusCode.UNAVAILABLE, DaemonConnectionError),
    ])
    def test_transport_failures(self, transport, rpcs, code, error_class):
        rpcs[proto.GET_CHANNEL_STATE_METHOD].side_effect = FakeRpcError(code)
        with pytest.raises(error_class) as excinfo:
            transport.get_channel_state(7, b"sig", 120)
        assert excinfo.value.status_code == code.name

    def test_daemon_rejection(self, transport, rpcs):
        rpcs[proto.GET_TOKEN_METHOD].side_effect = FakeRpcError(
            grpc.StatusCode.FAILED_PRECONDITION, "incorrect nonce"
        )
        with pytest.raises(DaemonRpcError) as excinfo:
            transport.get_token(7, 1, 200, b"outer", 120, b"claim")

        assert type(excinfo.value) is DaemonRpcError
        assert excinfo.value.status_code == "FAILED_PRECONDITION"
        assert "incorrect nonce" in str(excinfo.value)


def test_close(transport, mock_channel):
    transport.close()
    mock_channel.close.assert_called_once()
    assert transport.channel is None
    transport.close()
