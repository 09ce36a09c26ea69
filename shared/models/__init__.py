from shared.models.user import Principal

__all__ = ["Principal"]
