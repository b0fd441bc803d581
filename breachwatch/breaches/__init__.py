from .client import Breach, BreachClient, filter_breaches

__all__ = ["Breach", "BreachClient", "filter_breaches"]
