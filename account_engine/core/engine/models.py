"""Return values of the engine actions."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ...auth.siwe import SignInWithEthereumResult
from ..execution.calls import Call
from ..execution.intent_executor import PreparedCalls
from ..precalls.ledger import PreCall
from ..wallet.models import Account, Key


@dataclass
class CreateAccountResult:
    account: Account
    sign_in_with_ethereum: Optional[SignInWithEthereumResult] = None


@dataclass
class LoadAccountsResult:
    accounts: List[Account]
    pre_calls: List[PreCall] = field(default_factory=list)
    sign_in_with_ethereum: Optional[SignInWithEthereumResult] = None


@dataclass
class GrantPermissionsResult:
    key: Key
    pre_calls: List[PreCall] = field(default_factory=list)


@dataclass
class PrepareCallsResult(PreparedCalls):
    """Prepared bundle plus the account and calls it was prepared for."""
    account: Optional[Account] = None
    calls: List[Call] = field(default_factory=list)


@dataclass
class PrepareUpgradeAccountResult:
    context: Dict[str, Any]
    digests: Dict[str, str]
    keys: List[Key] = field(default_factory=list)
