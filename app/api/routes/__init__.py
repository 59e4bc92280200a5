from . import auth, colours, health, monitoring

__all__ = ["auth", "colours", "health", "monitoring"]
