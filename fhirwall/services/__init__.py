"""Interaction services"""
from .conditional import ConditionalOrchestrator
from .interactions import InteractionService

__all__ = [
    "ConditionalOrchestrator",
    "InteractionService",
]
