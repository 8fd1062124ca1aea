"""Key authorization and call bundle orchestration for delegated accounts."""

__version__ = "0.1.0"
