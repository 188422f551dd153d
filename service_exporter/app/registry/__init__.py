from .client_registry import ClientEntry, ClientRegistry

__all__ = ["ClientEntry", "ClientRegistry"]
