"""
Service daemon transports for the MPE SDK.

The gRPC transport requires additional dependencies that can be installed with:
    pip install mpe-sdk[grpc]
"""
from ._deps import ensure_grpc_installed
from .stub_transport import StubDaemonTransport
from .transport import DaemonTransport, get_grpc_transport, get_stub_transport, get_transport

__all__ = [
    'DaemonTransport',
    'StubDaemonTransport',
    'ensure_grpc_installed',
    'get_grpc_transport',
    'get_stub_transport',
    'get_transport',
]
