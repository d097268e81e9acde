"""
Ollama Provider Service

Routes text and vision requests to a locally hosted Ollama server.
Ollama has no image generation and no web access, so try-on returns a
text description and weather is simulated.
"""

import base64
import logging
from typing import Iterable, Optional

from .errors import InvalidRequestError
from .http_client import RetryingClient
from .response_normalizer import normalize

logger = logging.getLogger(__name__)

WEATHER_NOTE = "Note: this is a simulated estimate; the local model has no real-time data."


class OllamaProvider:
    """
    Calls Ollama's /api/generate and /api/chat endpoints.

    Args:
        base_url: Ollama server URL (e.g. http://localhost:11434)
        text_model: Model for chat, weather and descriptions
        vision_model: Multimodal model for photo analysis
        http: Optional RetryingClient (injected in tests)
    """

    def __init__(self, base_url: str, text_model: str = "llama3.2", vision_model: str = "llava",
                 http: Optional[RetryingClient] = None):
        self.text_model = text_model
        self.vision_model = vision_model
        self.http = http or RetryingClient(base_url, timeout=300.0)

    def _generate(self, model: str, prompt: str, images=None, json_format: bool = False) -> dict:
        payload = {'model': model, 'prompt': prompt, 'stream': False}
        if images:
            payload['images'] = [base64.b64encode(image).decode('ascii') for image in images]
        if json_format:
            payload['format'] = 'json'
        return self.http.call('/api/generate', payload)

    def get_weather(self, location_query: str) -> dict:
        prompt = (
            f"Estimate typical current weather for {location_query} in one short line "
            "(e.g., \"City: 20°C, Sunny\"). You cannot access real-time data, so give a "
            "plausible seasonal estimate."
        )
        text = normalize(self._generate(self.text_model, prompt), default_text='Weather data unavailable').text
        return {'text': f"{text.strip()} ({WEATHER_NOTE})", 'sources': []}

    def suggest_outfit(self, prompt: str, image_bytes: bytes) -> dict:
        response = self._generate(self.vision_model, prompt, images=[image_bytes], json_format=True)
        normalized = normalize(response, expect_json=True)
        return {'text': normalized.text, 'parsed': normalized.parsed}

    def describe_outfit(self, prompt: str, image_bytes: Optional[bytes] = None) -> str:
        if image_bytes:
            response = self._generate(self.vision_model, prompt, images=[image_bytes])
        else:
            response = self._generate(self.text_model, prompt)
        return normalize(response).text.strip()

    def stylist_chat(self, history: Iterable[dict], new_message: str) -> str:
        messages = []
        for message in history or []:
            role = message.get('role') if isinstance(message, dict) else None
            if role not in ('user', 'model'):
                raise InvalidRequestError(f"Invalid chat role: {role}")
            # Ollama calls the model side "assistant"
            messages.append({
                'role': 'assistant' if role == 'model' else 'user',
                'content': message.get('text', ''),
            })
        messages.append({'role': 'user', 'content': new_message})

        response = self.http.call('/api/chat', {'model': self.text_model, 'messages': messages, 'stream': False})
        return normalize(response).text
