# -*- coding: utf-8 -*-
"""Staging validators and the pipeline that runs them."""

from .base import BaseValidator, ValidatorResult
from .pipeline import DEFAULT_VALIDATORS, ValidationPipeline, ValidationSummary

__all__ = [
    'BaseValidator',
    'ValidatorResult',
    'ValidationPipeline',
    'ValidationSummary',
    'DEFAULT_VALIDATORS',
]
