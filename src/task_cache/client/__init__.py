from .http import ApiClient, TokenProvider

__all__ = ["ApiClient", "TokenProvider"]
