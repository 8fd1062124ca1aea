from .ledger import NullPreCallLedger, PreCall, PreCallLedger, ledger_key
from .storage import MemoryStorage, RedisStorage, Storage, default_storage

__all__ = [
    "NullPreCallLedger",
    "PreCall",
    "PreCallLedger",
    "ledger_key",
    "MemoryStorage",
    "RedisStorage",
    "Storage",
    "default_storage",
]
