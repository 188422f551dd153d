from .query_loader import QueryLoader

__all__ = ["QueryLoader"]
