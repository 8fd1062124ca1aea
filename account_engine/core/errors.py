"""
Error Classification

Errors raised by the account engine. Precondition errors are local and
never retried; relay errors carry the structured cause reported by the
relay; confirmation timeouts are the only recoverable class.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Categories of errors for caller-side handling decisions."""

    VALIDATION = "validation"       # Local precondition failed
    AUTHORIZATION = "authorization" # No key may authorize the action
    PROVIDER = "provider"           # Relay rejected the request
    CONTRACT = "contract"           # Execution reverted with an ABI error
    TIMEOUT = "timeout"             # Confirmation did not arrive in time
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False
    suggested_action: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class EngineError(Exception):
    """Base class for every error raised by the engine."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext(
            category=self.category,
            recoverable=self.recoverable,
        )


class PreconditionError(EngineError):
    """A local, synchronous check failed. Fatal to the call."""

    category = ErrorCategory.VALIDATION


class AdminKeyNotFoundError(PreconditionError):
    """No admin key able to sign was found on the account."""

    category = ErrorCategory.AUTHORIZATION

    def __init__(self, message: str = "admin key not found."):
        super().__init__(message)


class AuthorizedKeyNotFoundError(PreconditionError):
    """No key on the account may authorize the requested calls."""

    category = ErrorCategory.AUTHORIZATION

    def __init__(self, message: str = "cannot find authorized key to sign with."):
        super().__init__(message)


class KeyToAuthorizeNotFoundError(PreconditionError):
    """The permissions request did not compile into a key."""

    def __init__(self, message: str = "key to authorize not found."):
        super().__init__(message)


class LastWebAuthnKeyError(PreconditionError):
    def __init__(self, message: str = "revoke the only WebAuthn key left."):
        super().__init__(message)


class AdminRevokeError(PreconditionError):
    """Admin keys are revoked through revoke_admin only."""

    def __init__(self, message: str = "cannot revoke admins."):
        super().__init__(message)


class AccountImplementationNotFoundError(PreconditionError):
    def __init__(self, message: str = "accountImplementation not found."):
        super().__init__(message)


class AccountNotFoundError(PreconditionError):
    def __init__(self, message: str = "account address not found."):
        super().__init__(message)


class QuoteExpiredError(PreconditionError):
    """The quote's ttl elapsed; the caller has to prepare the calls again."""

    def __init__(self, ttl: int):
        super().__init__(f"quote expired at {ttl}; prepare the calls again.")
        self.ttl = ttl


class FeeTokenError(PreconditionError):
    pass


class UnsupportedKeyError(PreconditionError):
    """The signer holds no material for the requested key."""

    pass


class RelayError(EngineError):
    """JSON-RPC error returned by the relay."""

    category = ErrorCategory.PROVIDER

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Any = None,
    ):
        super().__init__(message)
        self.code = code
        self.data = data


class ExecutionError(RelayError):
    """The relay could not execute the calls.

    ``abi_error`` holds the name of the decoded revert reason, when the
    relay reported one (e.g. ``KeyDoesNotExist``).
    """

    category = ErrorCategory.CONTRACT

    def __init__(
        self,
        message: str,
        abi_error: Optional[str] = None,
        code: Optional[int] = None,
        data: Any = None,
    ):
        full = message if not abi_error else f"{message} Reason: {abi_error}"
        super().__init__(full, code=code, data=data)
        self.abi_error = abi_error


class BundleFailedError(RelayError):
    """The bundle reached a final, unsuccessful status."""

    def __init__(self, bundle_id: str, status: int):
        super().__init__(f"call bundle {bundle_id} failed with status {status}.")
        self.bundle_id = bundle_id
        self.status = status


class UnknownBundleIdError(RelayError):
    def __init__(self, bundle_id: str):
        super().__init__(f"no receipts found for call bundle {bundle_id}.")
        self.bundle_id = bundle_id


class CallsStatusTimeoutError(EngineError):
    """Confirmation polling gave up. Pending pre-calls are left in place."""

    category = ErrorCategory.TIMEOUT
    recoverable = True

    def __init__(self, bundle_id: str, timeout: float):
        super().__init__(
            f"timed out after {timeout}s waiting for call bundle {bundle_id}.",
            context=ErrorContext(
                category=ErrorCategory.TIMEOUT,
                recoverable=True,
                suggested_action="Check get_calls_status before sending again",
                details={"bundle_id": bundle_id},
            ),
        )
        self.bundle_id = bundle_id
        self.timeout = timeout
