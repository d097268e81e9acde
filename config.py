"""
Runtime configuration

Settings are read from the environment. ``.env.local`` is preferred for
local development, then ``.env``.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from services.errors import ConfigurationError

API_KEY_VARS = ("GEMINI_API_KEY", "API_KEY", "GOOGLE_API_KEY")


def load_environment(base_dir: Optional[str] = None) -> Optional[str]:
    """
    Load .env.local if it exists, otherwise .env.

    Returns:
        str: Path of the file that was loaded, or None
    """
    base_dir = base_dir or os.getcwd()
    for name in ('.env.local', '.env'):
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path)
            return path
    return None


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value in (None, ''):
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class Settings:
    """Relay server settings"""

    api_key: str
    port: int = 3001
    text_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-2.5-flash-image"
    video_model: str = "veo-3.1-fast-generate-preview"
    ollama_base_url: str = "http://localhost:11434"
    ollama_text_model: str = "llama3.2"
    ollama_vision_model: str = "llava"
    video_poll_interval: float = 3.0
    video_poll_timeout: float = 600.0
    max_content_length_mb: int = 20

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables.

        Raises:
            ConfigurationError: If no provider API key is set
        """
        api_key = next((os.getenv(var) for var in API_KEY_VARS if os.getenv(var)), None)
        if not api_key:
            raise ConfigurationError(
                "GEMINI_API_KEY is missing. Set it in your environment before starting the server."
            )

        return cls(
            api_key=api_key,
            port=int(_float_env("PORT", 3001)),
            text_model=os.getenv("GEMINI_TEXT_MODEL", cls.text_model),
            image_model=os.getenv("GEMINI_IMAGE_MODEL", cls.image_model),
            video_model=os.getenv("GEMINI_VIDEO_MODEL", cls.video_model),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", cls.ollama_base_url),
            ollama_text_model=os.getenv("OLLAMA_TEXT_MODEL", cls.ollama_text_model),
            ollama_vision_model=os.getenv("OLLAMA_VISION_MODEL", cls.ollama_vision_model),
            video_poll_interval=_float_env("VIDEO_POLL_INTERVAL", cls.video_poll_interval),
            video_poll_timeout=_float_env("VIDEO_POLL_TIMEOUT", cls.video_poll_timeout),
            max_content_length_mb=int(_float_env("MAX_CONTENT_LENGTH_MB", cls.max_content_length_mb)),
        )


def client_api_base() -> str:
    """Relay base URL used by the client library and CLI"""
    return os.getenv("STYLIST_API_BASE", "http://localhost:3001")
