"""Backend services."""

from .executor import check_flow, execute_flow, get_model_caller, get_sentiment_classifier

__all__ = ["check_flow", "execute_flow", "get_model_caller", "get_sentiment_classifier"]
