from . import health, validators

__all__ = ["health", "validators"]
