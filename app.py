#!/usr/bin/env python3
"""
FashionMind - Relay Server
Flask server that keeps the provider API key off the client and forwards
requests to Gemini (or a local Ollama server), with Socket.IO progress
updates for long-running generations.
"""

import logging
import sys
import threading
from flask import Blueprint, Flask, Response, current_app, jsonify, request, stream_with_context, url_for
from flask_cors import CORS
from flask_socketio import SocketIO, emit
from werkzeug.exceptions import HTTPException

from config import Settings, load_environment
from models.schemas import GenerationProgress
from services.errors import (
    ConfigurationError,
    InvalidRequestError,
    RateLimitedError,
    StylistError,
)
from services.gemini_provider import GeminiProvider, is_video_download_uri
from services.image_converter import validate_and_prepare_image
from services.ollama_provider import OllamaProvider

logger = logging.getLogger(__name__)

# Initialize SocketIO (bound to an app in create_app)
socketio = SocketIO(cors_allowed_origins="*", async_mode='threading')

api = Blueprint('api', __name__)

# Cancel tokens for running rotation jobs, keyed by Socket.IO session id
_rotation_jobs = {}
_rotation_jobs_lock = threading.Lock()

FALLBACK_NOTE = (
    "Image generation is temporarily unavailable (provider quota reached). "
    "Showing a text description of the look instead."
)
OLLAMA_TRYON_NOTE = "The local model cannot render images. Showing a text description of the look instead."


def create_app(settings: Settings, gemini=None, ollama=None) -> Flask:
    """
    Build the relay application.

    Args:
        settings: Loaded Settings
        gemini: Optional GeminiProvider (tests inject a fake)
        ollama: Optional OllamaProvider (tests inject a fake)
    """
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = settings.max_content_length_mb * 1024 * 1024
    app.config['SETTINGS'] = settings

    app.extensions['gemini_provider'] = gemini or GeminiProvider(
        api_key=settings.api_key,
        text_model=settings.text_model,
        image_model=settings.image_model,
        video_model=settings.video_model,
    )
    app.extensions['ollama_provider'] = ollama or OllamaProvider(
        base_url=settings.ollama_base_url,
        text_model=settings.ollama_text_model,
        vision_model=settings.ollama_vision_model,
    )

    # Enable CORS
    CORS(app)

    app.register_blueprint(api)
    app.register_error_handler(StylistError, handle_stylist_error)
    app.register_error_handler(Exception, handle_unexpected_error)

    socketio.init_app(app)
    return app


def gemini() -> GeminiProvider:
    return current_app.extensions['gemini_provider']


def ollama() -> OllamaProvider:
    return current_app.extensions['ollama_provider']


def handle_stylist_error(error: StylistError):
    logger.warning("%s %s -> %s: %s", request.method, request.path, error.code, error.message)
    return jsonify(error.to_dict()), error.status_code


def handle_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Error in %s: %s", request.path, error)
    return jsonify({'error': f'Server error: {error}', 'code': 'server_error'}), 500


def emit_progress(sid: str, step: str, message: str, percent: int, details: dict = None):
    """Emit progress update via WebSocket (no-op without a socket id)"""
    if not sid:
        return
    progress = GenerationProgress(
        step=step,
        message=message,
        progress_percent=percent,
        details=details or {}
    )
    socketio.emit('progress', progress.to_dict(), to=sid)


def socket_id() -> str:
    return request.headers.get('X-Socket-ID', '')


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return data


def image_from(data: dict):
    """
    Decode and validate ``imageBase64``.

    Returns:
        tuple: (image_bytes, mime_type)
    """
    image_base64 = data.get('imageBase64')
    if not image_base64:
        raise InvalidRequestError("No image provided")
    try:
        return validate_and_prepare_image(image_base64)
    except ValueError as e:
        raise InvalidRequestError(str(e))


def categories_text(data: dict, default: str = 'outfit') -> str:
    categories = data.get('categories') or []
    return ', '.join(categories) if categories else default


def fallback_description_prompt(data: dict) -> str:
    return (
        "You are an expert fashion stylist. Image generation is unavailable, so describe the look in words.\n"
        f"Describe in vivid detail how a {data.get('gender') or 'person'} with "
        f"{data.get('skinTone') or 'their'} skin tone would look wearing: {data.get('itemDescription')}.\n"
        f"Categories: {categories_text(data)}. Season: {data.get('season') or 'any'}. "
        f"Weather: {data.get('weather') or 'Standard'}.\n"
        "Cover colors, fabrics, fit and accessories in 3-4 sentences."
    )


def chat_args(data: dict):
    history = data.get('history') or []
    new_message = (data.get('newMessage') or '').strip()
    if not isinstance(history, list):
        raise InvalidRequestError("history must be a list")
    if not all(isinstance(message, dict) for message in history):
        raise InvalidRequestError("history entries must be objects with role and text")
    if not new_message:
        raise InvalidRequestError("newMessage is required")
    return history, new_message


def location_query(data: dict) -> str:
    query = (data.get('locationQuery') or '').strip()
    if not query:
        raise InvalidRequestError("locationQuery is required")
    return query


@api.route('/health')
def health():
    """Health check endpoint"""
    return jsonify({'status': 'ok'})


@api.route('/api/get-weather', methods=['POST'])
def get_weather():
    """
    Current weather for a city or "latitude X, longitude Y" query.

    Returns:
        JSON with text, sources and raw candidates (grounding metadata)
    """
    data = json_body()
    return jsonify(gemini().get_weather(location_query(data)))


@api.route('/api/suggest-outfit', methods=['POST'])
def suggest_outfit():
    """
    Analyze the subject photo and return a JSON outfit brief.

    Returns:
        JSON with text and parsed ({description, advice} or null)
    """
    data = json_body()
    image_bytes, mime_type = image_from(data)
    prompt = data.get('prompt') or "You are an expert fashion stylist. Analyze the person in the image."
    return jsonify(gemini().suggest_outfit(prompt, image_bytes, mime_type))


@api.route('/api/generate-tryon', methods=['POST'])
def generate_tryon():
    """
    Render the subject wearing the described outfit.

    Returns:
        JSON with image (data URI), or {fallback, description, note}
        when the provider's image quota is exhausted
    """
    data = json_body()
    image_bytes, mime_type = image_from(data)
    item_description = (data.get('itemDescription') or '').strip()
    if not item_description:
        raise InvalidRequestError("itemDescription is required")

    sid = socket_id()
    prompt = data.get('prompt') or (
        f"Generate a photorealistic image of the person in this photo wearing: {item_description}."
    )

    emit_progress(sid, "rendering", "Rendering your look...", 10)
    try:
        image = gemini().generate_tryon(prompt, image_bytes, mime_type)
    except RateLimitedError as e:
        logger.warning("Image generation unavailable (%s); falling back to text description", e.code)
        emit_progress(sid, "fallback", "Image quota reached, describing the look instead...", 60)
        try:
            description = gemini().describe_outfit(fallback_description_prompt(data))
        except StylistError as describe_error:
            logger.warning("Fallback description failed (%s); using the requested description", describe_error.code)
            description = item_description
        emit_progress(sid, "complete", "Description ready", 100)
        return jsonify({'fallback': True, 'description': description, 'note': FALLBACK_NOTE})

    emit_progress(sid, "complete", "Look rendered", 100)
    return jsonify({'image': image})


@api.route('/api/generate-rotation', methods=['POST'])
def generate_rotation():
    """
    Generate a 360° turntable video of the composited image.

    Polling is bounded by VIDEO_POLL_TIMEOUT and can be cancelled with
    the ``cancel_rotation`` Socket.IO event from the same socket.

    Returns:
        JSON with uri pointing at the relay's video download proxy
    """
    data = json_body()
    image_bytes, mime_type = image_from(data)
    description = (data.get('description') or '').strip()
    if not description:
        raise InvalidRequestError("description is required")

    settings = current_app.config['SETTINGS']
    sid = socket_id()
    cancel_event = threading.Event()
    register_rotation_job(sid, cancel_event)

    def on_poll(polls, elapsed):
        percent = min(95, int(elapsed / settings.video_poll_timeout * 100))
        emit_progress(sid, "generating_video", f"Still rendering video ({elapsed:.0f}s)...", percent, {"polls": polls})

    emit_progress(sid, "generating_video", "Starting video generation...", 0)
    try:
        video_uri = gemini().generate_rotation(
            image_bytes,
            mime_type,
            description,
            poll_interval=settings.video_poll_interval,
            timeout=settings.video_poll_timeout,
            cancel_event=cancel_event,
            on_poll=on_poll,
        )
    finally:
        release_rotation_job(sid, cancel_event)

    emit_progress(sid, "complete", "Video ready", 100)
    return jsonify({'uri': url_for('api.rotation_video', uri=video_uri)})


@api.route('/api/rotation-video')
def rotation_video():
    """Stream a generated video, attaching the server key upstream"""
    uri = request.args.get('uri', '')
    if not is_video_download_uri(uri):
        raise InvalidRequestError("Unsupported video URI")

    upstream = gemini().fetch_video(uri)
    return Response(
        stream_with_context(upstream.iter_content(chunk_size=64 * 1024)),
        content_type=upstream.headers.get('Content-Type', 'video/mp4'),
    )


@api.route('/api/stylist-chat', methods=['POST'])
def stylist_chat():
    """Reply to the stylist chat. The client resends the whole transcript."""
    history, new_message = chat_args(json_body())
    return jsonify({'text': gemini().stylist_chat(history, new_message)})


# --- Local model (Ollama) variants ---

@api.route('/api/ollama/get-weather', methods=['POST'])
def ollama_get_weather():
    """Simulated weather: the local model has no real-time data"""
    return jsonify(ollama().get_weather(location_query(json_body())))


@api.route('/api/ollama/suggest-outfit', methods=['POST'])
def ollama_suggest_outfit():
    data = json_body()
    image_bytes, _ = image_from(data)
    prompt = data.get('prompt') or "You are an expert fashion stylist. Analyze the person in the image. Return only valid JSON."
    return jsonify(ollama().suggest_outfit(prompt, image_bytes))


@api.route('/api/ollama/generate-tryon', methods=['POST'])
def ollama_generate_tryon():
    """Text-only try-on: returns a description instead of an image"""
    data = json_body()
    image_bytes, _ = image_from(data)
    item_description = (data.get('itemDescription') or '').strip()
    if not item_description:
        raise InvalidRequestError("itemDescription is required")

    prompt = data.get('prompt') or fallback_description_prompt(data)
    description = ollama().describe_outfit(prompt, image_bytes) or item_description
    return jsonify({'fallback': True, 'description': description, 'note': OLLAMA_TRYON_NOTE})


@api.route('/api/ollama/stylist-chat', methods=['POST'])
def ollama_stylist_chat():
    history, new_message = chat_args(json_body())
    return jsonify({'text': ollama().stylist_chat(history, new_message)})


# WebSocket event handlers
@socketio.on('connect')
def handle_connect():
    """Handle client connection"""
    logger.info("Client connected: %s", request.sid)
    emit('connected', {'sid': request.sid})


@socketio.on('disconnect')
def handle_disconnect(*args):
    """Handle client disconnection; abandons any running video poll"""
    logger.info("Client disconnected: %s", request.sid)
    cancel_rotation_job(request.sid)


@socketio.on('cancel_rotation')
def handle_cancel_rotation(*args):
    if cancel_rotation_job(request.sid):
        emit('progress', GenerationProgress("cancelling", "Cancelling video generation...", 0).to_dict())


def register_rotation_job(sid: str, cancel_event: threading.Event) -> None:
    if not sid:
        return
    with _rotation_jobs_lock:
        _rotation_jobs[sid] = cancel_event


def release_rotation_job(sid: str, cancel_event: threading.Event) -> None:
    """Forget ``cancel_event``, unless a newer job from the same socket replaced it"""
    with _rotation_jobs_lock:
        if _rotation_jobs.get(sid) is cancel_event:
            del _rotation_jobs[sid]


def cancel_rotation_job(sid: str) -> bool:
    """Set the cancel token of the rotation job owned by ``sid``"""
    with _rotation_jobs_lock:
        event = _rotation_jobs.get(sid)
    if event is None:
        return False
    event.set()
    return True


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    load_environment()

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        print(f"❌ Error: {e}")
        print("\nPlease set it in your .env.local or .env file.")
        sys.exit(1)

    app = create_app(settings)
    print("🚀 Starting FashionMind relay server with WebSocket support...")
    print(f"📡 Listening on http://localhost:{settings.port}")

    # Run with SocketIO
    socketio.run(app, host='0.0.0.0', port=settings.port, allow_unsafe_werkzeug=True)
