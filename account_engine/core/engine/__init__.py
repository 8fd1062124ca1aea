from .engine import AccountEngine
from .models import (
    CreateAccountResult,
    GrantPermissionsResult,
    LoadAccountsResult,
    PrepareCallsResult,
    PrepareUpgradeAccountResult,
)
from .session import EngineSession

__all__ = [
    "AccountEngine",
    "CreateAccountResult",
    "EngineSession",
    "GrantPermissionsResult",
    "LoadAccountsResult",
    "PrepareCallsResult",
    "PrepareUpgradeAccountResult",
]
