from .oauth import router

__all__ = ["router"]
