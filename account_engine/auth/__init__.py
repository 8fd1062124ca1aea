from .siwe import (
    SignInWithEthereumRequest,
    SignInWithEthereumResult,
    build_message,
    parse_siwe_request,
)

__all__ = [
    "SignInWithEthereumRequest",
    "SignInWithEthereumResult",
    "build_message",
    "parse_siwe_request",
]
