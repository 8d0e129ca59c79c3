from .tokens import TokenVerifier, ensure_owner

__all__ = ["TokenVerifier", "ensure_owner"]
