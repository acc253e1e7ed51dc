"""
Tests for payment metadata construction.
"""
from mpe_sdk import metadata as headers


def test_escrow_metadata():
    metadata = headers.escrow_metadata(7, 2, 300, b"\x01\x02")
    assert metadata == [
        ("snet-payment-type", "escrow"),
        ("snet-payment-channel-id", "7"),
        ("snet-payment-channel-nonce", "2"),
        ("snet-payment-channel-amount", "300"),
        ("snet-payment-channel-signature-bin", b"\x01\x02"),
    ]


def test_training_metadata_appends_model_id():
    metadata = headers.training_metadata("model-1", 7, 2, 300, b"\x01")
    assert metadata[0] == (headers.PAYMENT_TYPE, "train-call")
    assert metadata[-1] == (headers.TRAIN_MODEL_ID, "model-1")


def test_prepaid_token_is_binary():
    """Tokens returned as text by the daemon are sent as utf-8 bytes"""
    metadata = headers.prepaid_metadata(7, 0, "opaque-token")
    assert metadata == [
        ("snet-payment-type", "prepaid-call"),
        ("snet-payment-channel-id", "7"),
        ("snet-payment-channel-nonce", "0"),
        ("snet-prepaid-auth-token-bin", b"opaque-token"),
    ]


def test_free_call_metadata_order():
    metadata = headers.free_call_metadata(
        "0xAbC", 120, b"\xbe\xef", b"\x05", user_id="alice", token_expiry_block=500
    )
    assert [key for key, _ in metadata] == [
        headers.PAYMENT_TYPE,
        headers.FREE_CALL_USER_ID,
        headers.FREE_CALL_USER_ADDRESS,
        headers.CURRENT_BLOCK_NUMBER,
        headers.FREE_CALL_AUTH_TOKEN,
        headers.FREE_CALL_TOKEN_EXPIRY_BLOCK,
        headers.SIGNATURE,
    ]
    assert dict(metadata)[headers.CURRENT_BLOCK_NUMBER] == "120"


def test_missing_fields_are_omitted():
    metadata = headers.free_call_metadata("0xAbC", 120, None, b"\x05")
    keys = [key for key, _ in metadata]
    assert headers.FREE_CALL_USER_ID not in keys
    assert headers.FREE_CALL_AUTH_TOKEN not in keys
    assert headers.FREE_CALL_TOKEN_EXPIRY_BLOCK not in keys
    assert keys[-1] == headers.SIGNATURE


def test_header_values_types():
    for key, value in headers.escrow_metadata(1, 0, 1, b"\x00"):
        if key.endswith("-bin"):
            assert isinstance(value, bytes)
        else:
            assert isinstance(value, str)
