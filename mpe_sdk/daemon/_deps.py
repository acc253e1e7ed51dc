"""
Dependency management for the daemon transport.

This standalone module helps break circular import dependencies.
"""
import logging

logger = logging.getLogger(__name__)


def ensure_grpc_installed():
    """
    Check if grpc and related packages are installed.
    Raises ImportError with installation instructions if not found.
    """
    try:
        import grpc
        import google.protobuf
        return True
    except ImportError:
        raise ImportError(
            "Daemon gRPC transport requires additional dependencies: grpcio, protobuf. "
            "Please install with: pip install mpe-sdk[grpc]"
        )
