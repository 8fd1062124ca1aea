from .fee_tokens import FeeToken, FeeTokenResolver

__all__ = ["FeeToken", "FeeTokenResolver"]
