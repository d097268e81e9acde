"""
Data schemas for FashionMind

Plain dataclasses shared by the relay, the client adapters and the
studio controller. Wardrobe items and chat messages are frozen: the
studio only ever appends or removes them.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


SEASONS = ('Spring', 'Summer', 'Autumn', 'Winter')
CATEGORIES = ('tops', 'bottoms', 'outerwear', 'accessories')
GENDERS = ('Woman', 'Man')
SKIN_TONES = (
    'East Asian',
    'Southeast Asian',
    'South Asian',
    'Middle Eastern',
    'African / African Diaspora',
    'Latin American',
    'European',
    'Pacific Islander',
    'Mixed / Multicultural',
    'Prefer not to say',
)


def new_id() -> str:
    return uuid.uuid4().hex


class GenerationState(str, Enum):
    """Generation stage of a try-on session. Exactly one is active."""

    IDLE = 'idle'
    SUGGESTING = 'suggesting'
    RENDERING = 'rendering'
    GENERATING_VIDEO = 'generating_video'


@dataclass(frozen=True)
class ChatMessage:
    """A single message in the stylist chat transcript"""

    role: str  # "user" or "model"
    text: str
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.role not in ('user', 'model'):
            raise ValueError(f"Invalid chat role: {self.role}")

    def to_api(self) -> Dict[str, str]:
        """Shape sent to /api/stylist-chat"""
        return {'role': self.role, 'text': self.text}


@dataclass(frozen=True)
class WardrobeItem:
    """A saved look. Created on explicit save, never updated."""

    image: str
    description: str
    season: str
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class Source:
    title: str = ''
    uri: str = ''

    def to_dict(self) -> Dict[str, str]:
        return {'title': self.title, 'uri': self.uri}


@dataclass(frozen=True)
class WeatherReport:
    text: str
    sources: Tuple[Source, ...] = ()


@dataclass(frozen=True)
class OutfitSuggestion:
    description: str
    advice: str


@dataclass(frozen=True)
class TryOnResult:
    """
    Outcome of a try-on render.

    In degraded mode ``image`` is empty, ``fallback`` is True and
    ``description`` holds the text substitute.
    """

    image: str = ''
    fallback: bool = False
    description: str = ''
    note: str = ''


@dataclass(frozen=True)
class VideoOperation:
    """Handle for an asynchronous video generation job"""

    name: str = ''
    done: bool = False
    uri: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ProviderResponse:
    """Canonical shape extracted from a provider response envelope"""

    text: str = ''
    parsed: Optional[Dict[str, Any]] = None
    image: Optional[str] = None
    sources: Tuple[Source, ...] = ()
    operation: Optional[VideoOperation] = None


@dataclass
class TryOnSession:
    """
    Ephemeral try-on state for one user. Never persisted.
    """

    subject_image: Optional[str] = None
    vision: str = ''
    categories: List[str] = field(default_factory=lambda: ['tops'])
    gender: str = 'Woman'
    skin_tone: str = 'East Asian'
    nationality: str = ''
    season: str = 'Summer'
    weather: str = ''
    weather_source: Optional[Source] = None
    generated_image: Optional[str] = None
    generated_video: Optional[str] = None
    stylist_advice: Optional[str] = None
    fallback_note: Optional[str] = None

    def __post_init__(self):
        if self.season not in SEASONS:
            raise ValueError(f"Invalid season: {self.season}. Supported: {SEASONS}")
        if not self.categories:
            raise ValueError("At least one clothing category must be selected")

    def clear_results(self) -> None:
        self.generated_image = None
        self.generated_video = None
        self.stylist_advice = None
        self.fallback_note = None


@dataclass
class GenerationProgress:
    """Progress update pushed to Socket.IO clients"""

    step: str
    message: str
    progress_percent: int
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
