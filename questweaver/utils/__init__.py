"""
Utility modules for the QuestWeaver narrative engine
"""

from .logger import VERBOSE, get_logger, setup_logging
from .metrics import MetricsCollector, PhaseTimer
from .tokens import TokenEstimator

__all__ = [
    "VERBOSE",
    "get_logger",
    "setup_logging",
    "MetricsCollector",
    "PhaseTimer",
    "TokenEstimator",
]
