from .relay import RelayClient, RelayConfig, get_relay_client

__all__ = ["RelayClient", "RelayConfig", "get_relay_client"]
