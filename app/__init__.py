# -*- coding: utf-8 -*-
"""
TRRCMS Import Pipeline Application Core
"""

from .config import Config, PipelineSettings

__all__ = ["Config", "PipelineSettings"]
