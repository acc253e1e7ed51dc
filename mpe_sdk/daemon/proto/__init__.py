"""
Protocol buffer definitions for the daemon payment services.

The request/response messages of the ``escrow`` package (channel state,
free-call state and token services) are registered in a private descriptor
pool at import time, so no generated ``_pb2`` modules are needed.
"""
try:
    from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
    PROTO_AVAILABLE = True
except ImportError:
    PROTO_AVAILABLE = False

PACKAGE = "escrow"

GET_CHANNEL_STATE_METHOD = "/escrow.PaymentChannelStateService/GetChannelState"
GET_FREE_CALLS_AVAILABLE_METHOD = "/escrow.FreeCallStateService/GetFreeCallsAvailable"
GET_FREE_CALL_TOKEN_METHOD = "/escrow.FreeCallStateService/GetFreeCallToken"
GET_TOKEN_METHOD = "/escrow.TokenService/GetToken"

# (message name, [(field name, type)]); field numbers follow list order
_MESSAGES = [
    ("ChannelStateRequest", [
        ("channel_id", "bytes"),
        ("signature", "bytes"),
        ("current_block", "uint64"),
    ]),
    ("ChannelStateReply", [
        ("current_nonce", "bytes"),
        ("current_signed_amount", "bytes"),
        ("current_signature", "bytes"),
        ("old_nonce_signed_amount", "bytes"),
        ("old_nonce_signature", "bytes"),
        ("planned_amount", "uint64"),
        ("used_amount", "uint64"),
    ]),
    ("FreeCallStateRequest", [
        ("address", "string"),
        ("user_id", "string"),
        ("free_call_token", "bytes"),
        ("signature", "bytes"),
        ("current_block", "uint64"),
    ]),
    ("FreeCallStateReply", [
        ("user_id", "string"),
        ("free_calls_available", "uint64"),
    ]),
    ("GetFreeCallTokenRequest", [
        ("address", "string"),
        ("signature", "bytes"),
        ("current_block", "uint64"),
        ("user_id", "string"),
        ("token_lifetime_in_blocks", "uint64"),
    ]),
    ("FreeCallToken", [
        ("token", "bytes"),
        ("token_hex", "string"),
        ("token_expiration_block", "uint64"),
    ]),
    ("TokenRequest", [
        ("channel_id", "uint64"),
        ("current_nonce", "uint64"),
        ("signed_amount", "uint64"),
        ("signature", "bytes"),
        ("current_block", "uint64"),
        ("claim_signature", "bytes"),
    ]),
    ("TokenReply", [
        ("channel_id", "uint64"),
        ("token", "string"),
        ("planned_amount", "uint64"),
        ("used_amount", "uint64"),
    ]),
]


def _build_messages():
    field_proto = descriptor_pb2.FieldDescriptorProto
    field_types = {
        "bytes": field_proto.TYPE_BYTES,
        "string": field_proto.TYPE_STRING,
        "uint64": field_proto.TYPE_UINT64,
    }

    file_proto = descriptor_pb2.FileDescriptorProto()
    file_proto.name = "mpe_sdk/escrow_payments.proto"
    file_proto.package = PACKAGE
    file_proto.syntax = "proto3"
    for message_name, fields in _MESSAGES:
        message = file_proto.message_type.add()
        message.name = message_name
        for number, (field_name, field_type) in enumerate(fields, start=1):
            field = message.field.add()
            field.name = field_name
            field.number = number
            field.type = field_types[field_type]
            field.label = field_proto.LABEL_OPTIONAL

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return {
        message_name: message_factory.GetMessageClass(
            pool.FindMessageTypeByName(f"{PACKAGE}.{message_name}")
        )
        for message_name, _ in _MESSAGES
    }


if PROTO_AVAILABLE:
    _classes = _build_messages()
    ChannelStateRequest = _classes["ChannelStateRequest"]
    ChannelStateReply = _classes["ChannelStateReply"]
    FreeCallStateRequest = _classes["FreeCallStateRequest"]
    FreeCallStateReply = _classes["FreeCallStateReply"]
    GetFreeCallTokenRequest = _classes["GetFreeCallTokenRequest"]
    FreeCallToken = _classes["FreeCallToken"]
    TokenRequest = _classes["TokenRequest"]
    TokenReply = _classes["TokenReply"]

__all__ = [
    'ChannelStateRequest',
    'ChannelStateReply',
    'FreeCallStateRequest',
    'FreeCallStateReply',
    'GetFreeCallTokenRequest',
    'FreeCallToken',
    'TokenRequest',
    'TokenReply',
    'GET_CHANNEL_STATE_METHOD',
    'GET_FREE_CALLS_AVAILABLE_METHOD',
    'GET_FREE_CALL_TOKEN_METHOD',
    'GET_TOKEN_METHOD',
    'PROTO_AVAILABLE',
]
