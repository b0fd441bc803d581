from .core import create_engine_from_url, create_session_factory, init_models, session_scope
from .models import Base, Subscriber
from .subscribers import PilotStatus, SubscriberStore

__all__ = [
    "Base",
    "PilotStatus",
    "Subscriber",
    "SubscriberStore",
    "create_engine_from_url",
    "create_session_factory",
    "init_models",
    "session_scope",
]
