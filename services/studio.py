"""
Style Studio Controller

Owns all application state for one user: the try-on session, the saved
wardrobe and the stylist chat transcript. Wardrobe and chat transitions
are pure functions over tuples; the controller swaps in the new tuple.

Only one generation (suggest, render or video) runs at a time, and
results are committed to the session only when the whole step succeeds.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Optional, Tuple

from models.schemas import (
    CATEGORIES,
    SEASONS,
    ChatMessage,
    GenerationState,
    TryOnResult,
    TryOnSession,
    WardrobeItem,
)
from .errors import GenerationInProgressError
from .stylist_client import StylistClient

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = (
    "Welcome to the Vogue AI Outfit Lab. I am Vortex, your personal style director. "
    "Let's curate your next signature look. What is the occasion?"
)

STAGE_MESSAGES = {
    GenerationState.SUGGESTING: 'CURATING LOOK...',
    GenerationState.RENDERING: 'RENDERING 3D ASSETS...',
    GenerationState.GENERATING_VIDEO: 'SPINNING THE TURNTABLE...',
    GenerationState.IDLE: 'READY',
}


# --- Pure transitions ---

def add_wardrobe_item(wardrobe: Tuple[WardrobeItem, ...], item: WardrobeItem) -> Tuple[WardrobeItem, ...]:
    """Newest look first"""
    return (item,) + tuple(wardrobe)


def remove_wardrobe_item(wardrobe: Tuple[WardrobeItem, ...], item_id: str) -> Tuple[WardrobeItem, ...]:
    return tuple(item for item in wardrobe if item.id != item_id)


def append_message(history: Tuple[ChatMessage, ...], message: ChatMessage) -> Tuple[ChatMessage, ...]:
    return tuple(history) + (message,)


def toggle_category(categories: Tuple[str, ...], category: str) -> Tuple[str, ...]:
    """Add or remove a category. The last selected category cannot be removed."""
    if category not in CATEGORIES:
        raise ValueError(f"Unknown category: {category}. Supported: {CATEGORIES}")
    if category in categories:
        if len(categories) == 1:
            return tuple(categories)
        return tuple(c for c in categories if c != category)
    return tuple(categories) + (category,)


class StyleStudio:
    """
    Headless version of the four-tab studio (home, outfit chat, wardrobe, try-on).

    Args:
        client: StylistClient (hosted) or OllamaStylistClient (local)
        progress_callback: Optional callback(state, message) on stage changes
    """

    def __init__(self, client: StylistClient, progress_callback: Optional[Callable[[GenerationState, str], None]] = None):
        self.client = client
        self.progress_callback = progress_callback
        self.session = TryOnSession()
        self.wardrobe: Tuple[WardrobeItem, ...] = ()
        self.chat_history: Tuple[ChatMessage, ...] = (ChatMessage(role='model', text=WELCOME_MESSAGE),)
        self.state = GenerationState.IDLE
        self._generation_lock = threading.Lock()

    # --- Generation bookkeeping ---

    def _set_state(self, state: GenerationState) -> None:
        self.state = state
        if self.progress_callback:
            self.progress_callback(state, STAGE_MESSAGES[state])

    @contextmanager
    def _generation(self):
        if not self._generation_lock.acquire(blocking=False):
            raise GenerationInProgressError()
        try:
            yield
        finally:
            self._set_state(GenerationState.IDLE)
            self._generation_lock.release()

    # --- Preferences ---

    def set_subject_image(self, image: str) -> None:
        self.session.subject_image = image

    def set_season(self, season: str) -> None:
        if season not in SEASONS:
            raise ValueError(f"Invalid season: {season}. Supported: {SEASONS}")
        self.session.season = season

    def toggle_category(self, category: str) -> None:
        self.session.categories = list(toggle_category(tuple(self.session.categories), category))

    # --- Weather ---

    def fetch_weather(self, query: str):
        """Fetch weather text and keep the first citation, if any"""
        report = self.client.get_weather(query)
        self.session.weather = report.text
        if report.sources:
            self.session.weather_source = report.sources[0]
        return report

    def detect_location(self, latitude: float, longitude: float):
        return self.fetch_weather(f"latitude {latitude}, longitude {longitude}")

    # --- Try-on ---

    def try_on(self) -> TryOnResult:
        """
        Run the full try-on: suggest a look when no vision was given,
        then render it onto the subject photo.

        Raises:
            ValueError: If no subject image is set
            GenerationInProgressError: If another generation is running
            StylistError: When rendering fails (session left cleared)
        """
        session = self.session
        if not session.subject_image:
            raise ValueError("Upload or capture a photo before trying on a look")

        with self._generation():
            session.clear_results()

            description = session.vision
            advice = None
            if not description.strip():
                self._set_state(GenerationState.SUGGESTING)
                suggestion = self.client.suggest_outfit(
                    session.subject_image,
                    session.vision,
                    session.categories,
                    session.nationality,
                    session.season,
                    session.weather,
                    session.gender,
                    session.skin_tone,
                )
                description = suggestion.description
                advice = suggestion.advice

            self._set_state(GenerationState.RENDERING)
            result = self.client.generate_virtual_try_on(
                session.subject_image,
                description,
                session.categories,
                session.season,
                session.weather,
                session.gender,
                session.skin_tone,
            )

            # Commit only after every step succeeded
            session.vision = description
            session.stylist_advice = advice
            if result.fallback:
                logger.warning("Render fell back to a text description")
                session.generated_image = None
                session.fallback_note = result.note or result.description
                if not advice:
                    session.stylist_advice = result.description
            else:
                session.generated_image = result.image
            return result

    def generate_video(self) -> str:
        """Turn the current generated look into a turntable video URI"""
        if not self.session.generated_image:
            raise ValueError("Generate a look before requesting a turntable video")

        with self._generation():
            self._set_state(GenerationState.GENERATING_VIDEO)
            uri = self.client.generate_rotation_video(self.session.generated_image, self.session.vision)
            self.session.generated_video = uri
            return uri

    # --- Wardrobe ---

    def save_to_wardrobe(self) -> WardrobeItem:
        """Snapshot the current look into an immutable wardrobe item"""
        session = self.session
        if not session.generated_image:
            raise ValueError("No generated look to save")

        item = WardrobeItem(
            image=session.generated_image,
            description=session.stylist_advice or session.vision or "Custom Look",
            season=session.season,
        )
        self.wardrobe = add_wardrobe_item(self.wardrobe, item)
        return item

    def delete_wardrobe_item(self, item_id: str) -> None:
        self.wardrobe = remove_wardrobe_item(self.wardrobe, item_id)

    # --- Stylist chat ---

    def send_message(self, text: str) -> Optional[ChatMessage]:
        """
        Send a chat message and append the stylist's reply.

        Returns:
            ChatMessage: The model reply, or None for blank input
        """
        if not text or not text.strip():
            return None

        api_history = [message.to_api() for message in self.chat_history]
        user_message = ChatMessage(role='user', text=text)
        self.chat_history = append_message(self.chat_history, user_message)

        reply_text = self.client.get_stylist_advice(api_history, user_message.text)
        reply = ChatMessage(role='model', text=reply_text)
        self.chat_history = append_message(self.chat_history, reply)
        return reply
