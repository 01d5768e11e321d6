"""
Configuration Module

Environment-driven settings and structured option objects.
"""

from .settings import (
    API_KEY_SETTING,
    LANGUAGE_SETTING,
    RECORDING_STATE_KEY,
    CaptureConfig,
    CoordinatorConfig,
    RetryPolicy,
    StreamingOptions,
)

__all__ = [
    "API_KEY_SETTING",
    "LANGUAGE_SETTING",
    "RECORDING_STATE_KEY",
    "CaptureConfig",
    "CoordinatorConfig",
    "RetryPolicy",
    "StreamingOptions",
]
