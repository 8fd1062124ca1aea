from abc import ABC, abstractmethod
from typing import Any, Dict


class Provider(ABC):
    """Remote service the engine depends on (relay, merchant RPC)."""

    name: str
    timeout_s: int = 10

    @abstractmethod
    async def ready(self) -> bool:
        """True when the provider is configured to serve requests."""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Status dict: ``{"status": "healthy" | "disabled" | "error", ...}``."""
        pass

    async def close(self) -> None:
        """Release pooled connections. Safe to call more than once."""
        return None
