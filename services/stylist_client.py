"""
Stylist Client Service

Client-side capability adapters. Each adapter builds the prompt from the
user's context, posts it to the relay through the retrying HTTP client,
and maps the normalized response to its own result type.

StylistClient talks to the hosted provider routes (/api/*);
OllamaStylistClient talks to the local model routes (/api/ollama/*).
"""

import logging
from typing import Iterable, List, Optional

from models.schemas import OutfitSuggestion, TryOnResult, WeatherReport
from .errors import MalformedResponseError, NoImageReturnedError, ProviderError, StylistError
from .http_client import RetryingClient
from .response_normalizer import normalize
from .utils import strip_data_uri

logger = logging.getLogger(__name__)

WEATHER_UNAVAILABLE = 'Weather data unavailable'
CHAT_UNAVAILABLE = "I'm having trouble connecting to the fashion mainframe. Please try again."
DEFAULT_ADVICE = 'Here is a look curated for the current atmosphere.'
IMPROVISED_ADVICE = "I've improvised a look for you based on the context."

# Video jobs poll server-side for minutes
ROTATION_TIMEOUT = 900.0


def _categories_text(categories: List[str], default: str) -> str:
    return ', '.join(categories) if categories else default


class StylistClient:
    """
    Adapters for the hosted provider relay.

    Args:
        http: RetryingClient pointed at the relay
        max_attempts: Tries per call
    """

    prefix = '/api'
    weather_error_text = 'Unable to fetch weather'
    chat_error_text = (
        "I apologize, but I cannot provide advice at this moment. "
        "Please make sure the backend server is running (python app.py)."
    )

    def __init__(self, http: RetryingClient, max_attempts: int = 3):
        self.http = http
        self.max_attempts = max_attempts

    def _post(self, path: str, payload: dict, timeout: Optional[float] = None, max_attempts: Optional[int] = None) -> dict:
        return self.http.call(
            f"{self.prefix}{path}", payload, max_attempts=max_attempts or self.max_attempts, timeout=timeout
        )

    # --- Weather ---

    def get_weather(self, location_query: str) -> WeatherReport:
        """
        Fetches the current weather for a city or "latitude X, longitude Y".

        Citation metadata is optional; failures degrade to a placeholder text.
        """
        try:
            response = self._post('/get-weather', {'locationQuery': location_query})
        except StylistError as e:
            logger.error("Weather fetch error: %s", e)
            return WeatherReport(text=self.weather_error_text)

        normalized = normalize(response, default_text=WEATHER_UNAVAILABLE)
        return WeatherReport(text=normalized.text, sources=normalized.sources)

    # --- Outfit suggestion ---

    def outfit_prompt(self, user_preference, categories, nationality, season, weather, gender, skin_tone):
        categories_str = _categories_text(categories, 'complete outfit')
        return f"""
You are an expert luxury fashion stylist with 20+ years of experience. Your task is to provide comprehensive, detailed outfit recommendations.

User Demographics:
- Gender: {gender}
- Skin Tone: {skin_tone}

Context:
- User Vision/Preference: "{user_preference}"
- Clothing Categories: {categories_str}
- Season: {season}
- Weather: {weather}
- Regional/Cultural Style: {nationality}

COMPREHENSIVE ANALYSIS REQUIRED:
1. PERSONAL ANALYSIS: body type, skin tone and current style from the image; what flatters their complexion.
2. WEATHER-APPROPRIATE STYLING: thermal layers for cold, breathable fabrics for heat, water-resistant materials for rain.
3. COLOR THEORY & SKIN TONE: colors that complement {skin_tone} skin tone, why they work, accent colors.
4. FABRIC & MATERIAL: specific fabrics, textures, quality indicators.
5. STYLING DETAILS: specific pieces, accessories, layering, patterns and prints.
6. OCCASION & VERSATILITY: how the outfit works for the occasion and how to restyle it.

OUTPUT FORMAT (JSON):
{{
  "description": "A 200-300 word detailed visual description of the outfit: pieces, colors, fabrics, textures, patterns, accessories. Vivid enough to be used as an image-generator prompt.",
  "advice": "A 150-200 word friendly stylist note: why these colors suit their skin tone, how the outfit adapts to the weather, care and confidence tips."
}}

Be VERY detailed, specific, and fashion-forward. Avoid generic advice.
"""

    def suggest_outfit(
        self,
        image_base64: str,
        user_preference: str,
        categories: List[str],
        nationality: str,
        season: str,
        weather: str,
        gender: str,
        skin_tone: str,
    ) -> OutfitSuggestion:
        """
        Analyzes the user's photo and suggests an outfit description and advice.

        The model is asked for a JSON object. A parse failure or network
        failure falls back to the user's own preference text.
        """
        weather_context = weather or "Not specified (assume standard indoor/outdoor)"
        categories_str = _categories_text(categories, 'complete outfit')
        prompt = self.outfit_prompt(user_preference, categories, nationality, season, weather_context, gender, skin_tone)

        try:
            response = self._post('/suggest-outfit', {
                'imageBase64': strip_data_uri(image_base64),
                'userPreference': user_preference,
                'categories': list(categories),
                'nationality': nationality,
                'season': season,
                'weather': weather_context,
                'gender': gender,
                'skinTone': skin_tone,
                'prompt': prompt,
            })
        except StylistError as e:
            logger.error("Suggestion error: %s", e)
            return OutfitSuggestion(
                description=user_preference or f"A stylish {_categories_text(categories, 'outfit').replace(', ', ' and ')}",
                advice=IMPROVISED_ADVICE,
            )

        parsed = normalize(response, expect_json=True).parsed or {}
        return OutfitSuggestion(
            description=parsed.get('description') or user_preference or f"Stylish {categories_str} for {gender}",
            advice=parsed.get('advice') or DEFAULT_ADVICE,
        )

    # --- Try-on ---

    def tryon_prompt(self, item_description, categories, season, weather, gender, skin_tone):
        return f"""
Act as a professional virtual fashion stylist.
Generate a photorealistic image of the person in this photo wearing: {item_description}.

Subject Attributes:
- Gender: {gender}
- Skin Tone: {skin_tone}

Context:
- Categories being changed: {_categories_text(categories, 'outfit')}
- Season: {season}
- Weather: "{weather}"

Strict Requirements:
1. Keep the person's face, body pose, identity, and skin tone EXACTLY the same.
2. Keep the background EXACTLY the same.
3. ATMOSPHERE ADAPTATION: fabric weight, texture, and lighting match the weather (heavier for cold, lighter for hot, subtle wetness if raining).
4. Clothing fit aligns with standard {gender} fashion tailoring.
5. Output ONLY the image.
"""

    def generate_virtual_try_on(
        self,
        image_base64: str,
        item_description: str,
        categories: List[str],
        season: str,
        weather: str,
        gender: str,
        skin_tone: str,
    ) -> TryOnResult:
        """
        Generates a virtual try-on image by editing the subject photo.

        Returns:
            TryOnResult: image data URI, or fallback=True with a text
            description when the relay is in degraded mode

        Raises:
            NoImageReturnedError: If the relay returned neither image nor fallback
            StylistError: Any other failure
        """
        weather_context = weather or "Standard"
        response = self._post('/generate-tryon', {
            'imageBase64': strip_data_uri(image_base64),
            'itemDescription': item_description,
            'categories': list(categories),
            'season': season,
            'weather': weather_context,
            'gender': gender,
            'skinTone': skin_tone,
            'prompt': self.tryon_prompt(item_description, categories, season, weather_context, gender, skin_tone),
        })
        return self._tryon_result(response)

    def _tryon_result(self, response: dict) -> TryOnResult:
        if response.get('fallback') and response.get('description'):
            logger.warning("Using fallback description: %s", response.get('note', ''))
            return TryOnResult(
                image='',
                fallback=True,
                description=response['description'],
                note=response.get('note', ''),
            )

        image = normalize(response).image
        if image:
            return TryOnResult(image=image)
        raise NoImageReturnedError("No image returned from server proxy")

    # --- Rotation video ---

    def generate_rotation_video(self, image_base64: str, description: str) -> str:
        """
        Generates a 360-degree turntable video of the composited look.

        Sent once: every retry would start another video job upstream.

        Returns:
            str: Absolute URL of the video
        """
        logger.info("Starting turntable video generation...")
        response = self._post(
            '/generate-rotation',
            {'imageBase64': strip_data_uri(image_base64), 'description': description},
            timeout=ROTATION_TIMEOUT,
            max_attempts=1,
        )
        uri = response.get('uri')
        if not uri:
            raise MalformedResponseError("No video URI in response")
        return self.http.url_for(uri) if uri.startswith('/') else uri

    # --- Stylist chat ---

    def get_stylist_advice(self, history: Iterable[dict], new_message: str) -> str:
        """
        Chat with the stylist. The entire transcript is resent each call.
        """
        try:
            response = self._post('/stylist-chat', {'history': list(history), 'newMessage': new_message})
        except StylistError as e:
            logger.error("Stylist chat error: %s", e)
            return self.chat_error_text
        return normalize(response, default_text=CHAT_UNAVAILABLE).text


class OllamaStylistClient(StylistClient):
    """
    Adapters for the local model relay routes.

    The local model has no image generation, no video and no real-time data.
    """

    prefix = '/api/ollama'
    weather_error_text = 'Unable to fetch weather. Note: Ollama cannot access real-time data.'
    chat_error_text = "I apologize, but I cannot provide advice at this moment."

    def outfit_prompt(self, user_preference, categories, nationality, season, weather, gender, skin_tone):
        categories_str = _categories_text(categories, 'complete outfit')
        return f"""
You are an expert fashion stylist.

User Demographics:
- Gender: {gender}
- Skin Tone: {skin_tone}

Context:
- User Vision: "{user_preference}"
- Target Categories: {categories_str}
- Season: "{season}"
- Weather: "{weather}"
- Region Style: "{nationality}"

Tasks:
1. Consider the User's Vision (if provided) and the environment.
2. WEATHER CHECK: make the outfit practical for "{weather}".
3. COLOR THEORY: choose colors that complement the user's {skin_tone} skin tone.
4. If the User Vision is present keep its core idea; otherwise create a new look fitting the season and weather.
5. Return a JSON response with:
   - "description": detailed visual prompt for an image generator (include fabric textures).
   - "advice": a friendly stylist note on how the look adapts to the weather and suits their skin tone.

IMPORTANT: Return only valid JSON, no additional text.
"""

    def tryon_prompt(self, item_description, categories, season, weather, gender, skin_tone):
        return f"""
Act as a professional virtual fashion stylist.
Write a detailed photorealistic description, for an AI image generator, of the person in this photo wearing: {item_description}.

Subject Attributes:
- Gender: {gender}
- Skin Tone: {skin_tone}

Context:
- Categories being changed: {_categories_text(categories, 'outfit')}
- Season: {season}
- Weather: "{weather}"

Keep the person's face, pose, identity, skin tone and background the same, and match fabric weight and lighting to the weather.
"""

    def get_weather(self, location_query: str) -> WeatherReport:
        report = super().get_weather(location_query)
        return WeatherReport(text=report.text)

    def _tryon_result(self, response: dict) -> TryOnResult:
        return TryOnResult(
            image='',
            fallback=True,
            description=response.get('description') or '',
            note=response.get('note', ''),
        )

    def generate_rotation_video(self, image_base64: str, description: str) -> str:
        raise ProviderError("Turntable video is not available with the local model")


def build_client(base_url: str, use_ollama: bool = False, http: Optional[RetryingClient] = None) -> StylistClient:
    http = http or RetryingClient(base_url)
    return OllamaStylistClient(http) if use_ollama else StylistClient(http)
