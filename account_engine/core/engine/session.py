from dataclasses import dataclass
from typing import Optional

from ..wallet.models import Key


@dataclass
class EngineSession:
    """
    Caller-owned state carried between engine calls.

    ``create_account`` and ``prepare_upgrade_account`` record what a later
    ``load_accounts`` (mock mode) or ``upgrade_account`` needs: the
    account address, the headless admin key, and an email to register.
    """
    address: Optional[str] = None
    email: Optional[str] = None
    admin_key: Optional[Key] = None

    def clear(self) -> None:
        self.address = None
        self.email = None
        self.admin_key = None
