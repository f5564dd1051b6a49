from .capabilities import AbilityInputs, CapabilityConfig, ContextFilter, RetryPolicy
from .results import CallResult, ChatMessage, RoutedResult, Stage, StageKind

__all__ = [
    "AbilityInputs",
    "CallResult",
    "CapabilityConfig",
    "ChatMessage",
    "ContextFilter",
    "RetryPolicy",
    "RoutedResult",
    "Stage",
    "StageKind",
]
