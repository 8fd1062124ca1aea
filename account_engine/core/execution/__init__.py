"""
Call bundle execution through the relay.

Importing the executor pulls in the relay provider; import it from
``account_engine.core.execution.intent_executor`` directly.
"""

from .calls import Call, upgrade_proxy_account
from .models import (
    CallsStatus,
    CallsStatusCode,
    Quote,
    Receipt,
    SignedQuote,
    parse_quote,
)

__all__ = [
    "Call",
    "upgrade_proxy_account",
    "CallsStatus",
    "CallsStatusCode",
    "Quote",
    "Receipt",
    "SignedQuote",
    "parse_quote",
]
