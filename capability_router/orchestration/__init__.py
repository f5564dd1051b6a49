"""
Orchestration Package

This package contains the decision core that drives a capability request:
- Routed execution pipeline (primary call, retry loop, final pass)
- Retry classification and loop transitions
- Context window evaluation
- Parameter inference
- Final-pass response formatting
"""

from .context_window import ContextWindowEvaluator, LanguageModelContextEvaluator
from .formatters import FormatterRegistry, ResponseFormatter, format_generic_external_data
from .inference import ParameterInference, extract_inference_line
from .retry import (
    Continue,
    EffectiveRetryPolicy,
    RetryClassifier,
    RetryState,
    RetryStep,
    Stop,
    StopReason,
    decide_retry,
    evaluate_refinement,
)
from .router import RoutedExecutionPipeline

__all__ = [
    "Continue",
    "ContextWindowEvaluator",
    "EffectiveRetryPolicy",
    "FormatterRegistry",
    "LanguageModelContextEvaluator",
    "ParameterInference",
    "ResponseFormatter",
    "RetryClassifier",
    "RetryState",
    "RetryStep",
    "RoutedExecutionPipeline",
    "Stop",
    "StopReason",
    "decide_retry",
    "evaluate_refinement",
    "extract_inference_line",
    "format_generic_external_data",
]
