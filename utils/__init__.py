# -*- coding: utf-8 -*-
"""
TRRCMS Utility Module
"""

from .logger import get_logger, setup_logger
from .retry import next_delay, retry_call

__all__ = [
    "get_logger",
    "setup_logger",
    "next_delay",
    "retry_call",
]
