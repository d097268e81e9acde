"""
Gemini Provider Service

Server-side calls to Google's Gemini models (text, image edit, Veo video)
using the google-genai SDK. Holds the API key; nothing here runs in the
client.
"""

import logging
import re
import time
from typing import Callable, Iterable, Optional
from urllib.parse import urlparse

import requests
from google import genai
from google.genai import types

from .errors import (
    GenerationCancelledError,
    InvalidRequestError,
    MalformedResponseError,
    NoImageReturnedError,
    ProviderError,
    VideoTimeoutError,
    from_provider_exception,
)
from .response_normalizer import normalize

logger = logging.getLogger(__name__)


def _json_envelope(response) -> dict:
    if hasattr(response, 'model_dump'):
        return response.model_dump(mode='json', by_alias=True, exclude_none=True)
    return response if isinstance(response, dict) else {}


# Hosts the video download proxy is allowed to fetch from
VIDEO_HOSTS = ('generativelanguage.googleapis.com',)
VIDEO_DOWNLOAD_PATH = re.compile(r"^/v1(beta)?/files/[^/]+:download$")


def is_video_download_uri(uri: str) -> bool:
    """Only generated-file downloads on the provider host may carry the server key"""
    parsed = urlparse(uri)
    return (
        parsed.scheme == "https"
        and parsed.hostname in VIDEO_HOSTS
        and bool(VIDEO_DOWNLOAD_PATH.match(parsed.path))
    )


class GeminiProvider:
    """
    Thin wrapper around a ``genai.Client``.

    Args:
        api_key: Google API key
        text_model: Model for weather, suggestions and chat
        image_model: Model for try-on image editing
        video_model: Veo model for turntable videos
        client: Optional pre-built client (used in tests)
    """

    def __init__(
        self,
        api_key: str,
        text_model: str = "gemini-2.5-flash",
        image_model: str = "gemini-2.5-flash-image",
        video_model: str = "veo-3.1-fast-generate-preview",
        client=None,
    ):
        if not api_key and client is None:
            raise ValueError("GEMINI_API_KEY not found in environment variables")
        self.api_key = api_key
        self.text_model = text_model
        self.image_model = image_model
        self.video_model = video_model
        self.client = client or genai.Client(api_key=api_key)

    def _guarded(self, action: str, fn: Callable, *args, **kwargs):
        """Run an SDK call, translating SDK exceptions into the error taxonomy"""
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            error = from_provider_exception(e)
            logger.error("%s failed (%s): %s", action, error.code, error.message)
            raise error from e

    def get_weather(self, location_query: str) -> dict:
        """
        Current weather summary grounded with Google Search.

        Returns:
            dict: {"text", "sources", "candidates"}
        """
        response = self._guarded(
            "get-weather",
            self.client.models.generate_content,
            model=self.text_model,
            contents=(
                f"What is the current weather in {location_query}? "
                "Return a very concise summary (e.g., \"City: 20°C, Sunny\")."
            ),
            config=types.GenerateContentConfig(
                tools=[types.Tool(google_search=types.GoogleSearch())],
            ),
        )

        normalized = normalize(response, default_text='Weather data unavailable')
        return {
            'text': normalized.text,
            'sources': [source.to_dict() for source in normalized.sources],
            'candidates': _json_envelope(response).get('candidates', []),
        }

    def suggest_outfit(self, prompt: str, image_bytes: bytes, mime_type: str) -> dict:
        """
        Ask the text model for a JSON outfit brief.

        Returns:
            dict: {"text": raw model text, "parsed": dict or None}
        """
        response = self._guarded(
            "suggest-outfit",
            self.client.models.generate_content,
            model=self.text_model,
            contents=[
                types.Part.from_text(text=prompt),
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
            ],
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
            ),
        )

        normalized = normalize(response, expect_json=True)
        return {'text': normalized.text, 'parsed': normalized.parsed}

    def generate_tryon(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        """
        Edit the subject photo so the person wears the described outfit.

        Returns:
            str: Generated image as a data URI

        Raises:
            NoImageReturnedError: If the model answered without an image
            RateLimitedError / QuotaExhaustedError: On provider quota limits
        """
        response = self._guarded(
            "generate-tryon",
            self.client.models.generate_content,
            model=self.image_model,
            contents=[
                types.Part.from_text(text=prompt),
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
            ],
            config=types.GenerateContentConfig(
                response_modalities=["IMAGE", "TEXT"],
            ),
        )

        normalized = normalize(response)
        if not normalized.image:
            detail = f" Text response: {normalized.text[:100]}" if normalized.text else ""
            raise NoImageReturnedError(f"No image returned from model.{detail}")
        return normalized.image

    def describe_outfit(self, prompt: str) -> str:
        """Text-only outfit description, used when image generation is unavailable"""
        response = self._guarded(
            "describe-outfit",
            self.client.models.generate_content,
            model=self.text_model,
            contents=prompt,
        )
        text = normalize(response).text.strip()
        if not text:
            raise MalformedResponseError("Empty description returned from model")
        return text

    def generate_rotation(
        self,
        image_bytes: bytes,
        mime_type: str,
        description: str,
        poll_interval: float = 3.0,
        timeout: float = 600.0,
        cancel_event=None,
        on_poll: Optional[Callable[[int, float], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> str:
        """
        Start a Veo turntable video and poll the operation until it is done.

        Polling stops at ``timeout`` seconds or when ``cancel_event`` is set.

        Returns:
            str: Provider URI of the generated video

        Raises:
            VideoTimeoutError: If the job is still running at the deadline
            GenerationCancelledError: If the cancel token was set
        """
        operation = self._guarded(
            "generate-rotation",
            self.client.models.generate_videos,
            model=self.video_model,
            prompt=f"Cinematic 360 degree turntable shot of this fashion model wearing {description}.",
            image=types.Image(image_bytes=image_bytes, mime_type=mime_type),
            config=types.GenerateVideosConfig(
                number_of_videos=1,
                resolution="720p",
                aspect_ratio="9:16",
            ),
        )

        started = clock()
        polls = 0
        while not operation.done:
            if cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelledError("Video generation was cancelled")
            elapsed = clock() - started
            if elapsed >= timeout:
                raise VideoTimeoutError(f"Video generation did not finish within {timeout:.0f}s")

            sleep(poll_interval)
            if cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelledError("Video generation was cancelled")

            operation = self._guarded("poll-rotation", self.client.operations.get, operation)
            polls += 1
            logger.info("Video still rendering (poll %d, %.0fs elapsed)", polls, elapsed + poll_interval)
            if on_poll:
                on_poll(polls, clock() - started)

        handle = normalize(operation).operation
        if handle is None:
            raise MalformedResponseError("Unrecognised video operation response")
        if handle.error:
            raise ProviderError(f"Video generation failed: {handle.error}")
        if not handle.uri:
            raise MalformedResponseError("No video URI")
        logger.info("Video generation finished after %d poll(s)", polls)
        return handle.uri

    def stylist_chat(self, history: Iterable[dict], new_message: str) -> str:
        """
        Continue the stylist conversation. The full transcript is resent
        on every call; no server-side chat session is kept.
        """
        contents = []
        for message in history or []:
            role = message.get('role') if isinstance(message, dict) else None
            if role not in ('user', 'model'):
                raise InvalidRequestError(f"Invalid chat role: {role}")
            contents.append(types.Content(role=role, parts=[types.Part.from_text(text=message.get('text', ''))]))

        chat = self.client.chats.create(model=self.text_model, history=contents)
        response = self._guarded("stylist-chat", chat.send_message, new_message)
        return normalize(response).text

    def fetch_video(self, uri: str) -> requests.Response:
        """Open a streaming download of a generated video with the server key"""
        if not is_video_download_uri(uri):
            raise InvalidRequestError("Unsupported video URI")
        response = requests.get(uri, headers={'x-goog-api-key': self.api_key}, stream=True, timeout=60)
        if not response.ok:
            response.close()
            raise ProviderError(f"Video download failed with status {response.status_code}", status_code=502)
        return response
