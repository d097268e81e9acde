"""
FashionMind Services

This package contains service modules for the FashionMind application:
- errors: Error taxonomy shared by relay and client
- http_client: Retrying JSON HTTP client
- response_normalizer: Canonical view of provider responses
- utils / image_converter: Image payload handling
- gemini_provider / ollama_provider: Server-side provider calls
- stylist_client: Client-side capability adapters
- studio: Style studio state controller
"""

__all__ = [
    'errors',
    'http_client',
    'response_normalizer',
    'utils',
    'image_converter',
    'gemini_provider',
    'ollama_provider',
    'stylist_client',
    'studio',
]
