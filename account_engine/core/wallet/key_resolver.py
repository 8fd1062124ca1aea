"""
Resolves which key on an account signs a given call bundle.

Order:
1. An explicit permissions id selects that key (it must be able to sign).
2. The first unexpired session key able to sign whose call permissions
   cover every call in the bundle.
3. The first admin key able to sign.
"""

import logging
import time
from typing import Optional, Sequence

from ..errors import AuthorizedKeyNotFoundError
from ..execution.calls import Call
from .models import Account, Key, KeyRole


logger = logging.getLogger(__name__)


def session_key_covers(key: Key, calls: Sequence[Call]) -> bool:
    """True if every call matches at least one of the key's call permissions."""
    if not calls or not key.permissions.calls:
        return False
    return all(
        any(scope.matches(call) for scope in key.permissions.calls)
        for call in calls
    )


def get_authorized_execute_key(
    account: Account,
    calls: Sequence[Call],
    permissions_id: Optional[str] = None,
    now: Optional[int] = None,
) -> Optional[Key]:
    if permissions_id is not None:
        key = account.find_key(permissions_id)
        if key is None or not key.can_sign:
            raise AuthorizedKeyNotFoundError(
                f"permission (id: {permissions_id}) does not exist."
            )
        return key

    now = int(time.time()) if now is None else now

    for key in account.keys:
        if key.role != KeyRole.SESSION or not key.can_sign:
            continue
        if key.is_expired(now):
            continue
        if session_key_covers(key, calls):
            logger.debug(f"Using session key {key.id} for {len(calls)} call(s)")
            return key

    return account.get_key(role=KeyRole.ADMIN, can_sign=True)
