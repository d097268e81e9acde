"""
Data models for FashionMind
"""

from .schemas import (
    ChatMessage,
    WardrobeItem,
    TryOnSession,
    Source,
    WeatherReport,
    OutfitSuggestion,
    TryOnResult,
    VideoOperation,
    ProviderResponse,
    GenerationState,
    GenerationProgress
)

__all__ = [
    'ChatMessage',
    'WardrobeItem',
    'TryOnSession',
    'Source',
    'WeatherReport',
    'OutfitSuggestion',
    'TryOnResult',
    'VideoOperation',
    'ProviderResponse',
    'GenerationState',
    'GenerationProgress'
]
