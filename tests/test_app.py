import threading
from urllib.parse import parse_qs, urlparse

import pytest

from app import cancel_rotation_job, create_app, register_rotation_job, release_rotation_job
from config import Settings
from services.errors import (
    AuthError,
    GenerationCancelledError,
    ModelNotFoundError,
    QuotaExhaustedError,
    RateLimitedError,
    VideoTimeoutError,
)
from services.http_client import RetryingClient
from services.stylist_client import StylistClient

VIDEO_URI = 'https://generativelanguage.googleapis.com/v1beta/files/abc:download?alt=media'


class FakeGemini:
    def __init__(self):
        self.tryon_error = None
        self.describe_error = None
        self.rotation_error = None
        self.calls = []

    def get_weather(self, query):
        self.calls.append(('weather', query))
        return {'text': f'{query}: 18°C, Cloudy', 'sources': [], 'candidates': []}

    def suggest_outfit(self, prompt, image_bytes, mime_type):
        self.calls.append(('suggest', mime_type))
        return {'text': '{"description": "A", "advice": "B"}', 'parsed': {'description': 'A', 'advice': 'B'}}

    def generate_tryon(self, prompt, image_bytes, mime_type):
        self.calls.append(('tryon', prompt))
        if self.tryon_error:
            raise self.tryon_error
        return 'data:image/png;base64,UkVOREVS'

    def describe_outfit(self, prompt):
        self.calls.append(('describe', prompt))
        if self.describe_error:
            raise self.describe_error
        return 'A tailored emerald suit with gold buttons.'

    def generate_rotation(self, image_bytes, mime_type, description, **kwargs):
        self.calls.append(('rotation', kwargs))
        if self.rotation_error:
            raise self.rotation_error
        return VIDEO_URI

    def stylist_chat(self, history, new_message):
        return f'{len(history)}:{new_message}'

    def fetch_video(self, uri):
        return FakeUpstream()


class FakeUpstream:
    headers = {'Content-Type': 'video/mp4'}

    def iter_content(self, chunk_size):
        return iter([b'mp4-', b'bytes'])


class FakeOllama:
    def get_weather(self, query):
        return {'text': f'{query}: about 15°C (simulated)', 'sources': []}

    def suggest_outfit(self, prompt, image_bytes):
        return {'text': '{}', 'parsed': {}}

    def describe_outfit(self, prompt, image_bytes=None):
        return 'A breezy linen look.'

    def stylist_chat(self, history, new_message):
        return 'local reply'


@pytest.fixture
def gemini():
    return FakeGemini()


@pytest.fixture
def client(gemini):
    app = create_app(Settings(api_key='test'), gemini=gemini, ollama=FakeOllama())
    app.config['TESTING'] = True
    return app.test_client()


@pytest.fixture
def tryon_body(png_base64):
    return {'imageBase64': png_base64, 'itemDescription': 'emerald suit', 'categories': ['tops'], 'gender': 'Man'}


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok'}


def test_weather(client):
    response = client.post('/api/get-weather', json={'locationQuery': 'Paris'})
    assert response.status_code == 200
    assert response.get_json()['text'] == 'Paris: 18°C, Cloudy'


def test_weather_requires_query(client):
    response = client.post('/api/get-weather', json={})
    assert response.status_code == 400
    assert response.get_json()['code'] == 'invalid_request'


def test_suggest_outfit_accepts_data_uri(client, gemini, png_base64):
    response = client.post('/api/suggest-outfit', json={'imageBase64': 'data:image/png;base64,' + png_base64})
    assert response.status_code == 200
    assert response.get_json()['parsed'] == {'description': 'A', 'advice': 'B'}
    assert gemini.calls[0] == ('suggest', 'image/png')


def test_missing_image_is_400(client):
    response = client.post('/api/generate-tryon', json={'itemDescription': 'suit'})
    assert response.status_code == 400
    assert response.get_json() == {'error': 'No image provided', 'code': 'invalid_request'}


def test_garbage_image_is_400(client):
    response = client.post('/api/suggest-outfit', json={'imageBase64': 'bm90IGFuIGltYWdl'})
    assert response.status_code == 400


def test_tryon_returns_image(client, tryon_body):
    response = client.post('/api/generate-tryon', json=tryon_body)
    assert response.status_code == 200
    assert response.get_json() == {'image': 'data:image/png;base64,UkVOREVS'}


@pytest.mark.parametrize('error', [RateLimitedError('429 slow down'), QuotaExhaustedError('quota exceeded')])
def test_tryon_degrades_to_description(client, gemini, tryon_body, error):
    gemini.tryon_error = error

    response = client.post('/api/generate-tryon', json=tryon_body)

    assert response.status_code == 200
    body = response.get_json()
    assert body['fallback'] is True
    assert body['description'] == 'A tailored emerald suit with gold buttons.'
    assert body['note']


def test_tryon_degrades_to_request_text_when_describe_fails(client, gemini, tryon_body):
    gemini.tryon_error = QuotaExhaustedError('quota exceeded')
    gemini.describe_error = QuotaExhaustedError('quota exceeded')

    body = client.post('/api/generate-tryon', json=tryon_body).get_json()

    assert body['fallback'] is True
    assert body['description'] == 'emerald suit'


@pytest.mark.parametrize('error, status, code', [
    (AuthError('bad key'), 401, 'auth_error'),
    (ModelNotFoundError('no such model'), 404, 'model_not_found'),
])
def test_provider_errors_map_to_status(client, gemini, tryon_body, error, status, code):
    gemini.tryon_error = error
    response = client.post('/api/generate-tryon', json=tryon_body)
    assert response.status_code == status
    assert response.get_json()['code'] == code


def test_unexpected_error_is_500(client, gemini, tryon_body):
    gemini.tryon_error = RuntimeError('kaboom')
    response = client.post('/api/generate-tryon', json=tryon_body)
    assert response.status_code == 500
    assert response.get_json()['code'] == 'server_error'


def test_rotation_returns_proxy_uri(client, gemini, png_base64):
    response = client.post('/api/generate-rotation', json={'imageBase64': png_base64, 'description': 'emerald suit'})

    assert response.status_code == 200
    proxied = urlparse(response.get_json()['uri'])
    assert proxied.path == '/api/rotation-video'
    assert parse_qs(proxied.query)['uri'] == [VIDEO_URI]
    assert 'key=' not in response.get_json()['uri']
    kwargs = gemini.calls[-1][1]
    assert kwargs['timeout'] == 600.0
    assert kwargs['cancel_event'] is not None


def test_cancelled_rotation_is_409(client, gemini, png_base64):
    gemini.rotation_error = GenerationCancelledError()
    response = client.post('/api/generate-rotation', json={'imageBase64': png_base64, 'description': 'x'})
    assert response.status_code == 409
    assert response.get_json()['code'] == 'cancelled'


def test_cancel_without_job():
    assert cancel_rotation_job('no-such-socket') is False


def test_rotation_video_streams(client):
    response = client.get('/api/rotation-video', query_string={'uri': VIDEO_URI})
    assert response.status_code == 200
    assert response.mimetype == 'video/mp4'
    assert response.get_data() == b'mp4-bytes'


def test_rotation_video_rejects_other_hosts(client):
    response = client.get('/api/rotation-video', query_string={'uri': 'https://evil.example.com/v.mp4'})
    assert response.status_code == 400


def test_stylist_chat(client):
    response = client.post('/api/stylist-chat', json={'history': [{'role': 'model', 'text': 'Hi'}], 'newMessage': 'Hat?'})
    assert response.get_json() == {'text': '1:Hat?'}


def test_stylist_chat_requires_message(client):
    assert client.post('/api/stylist-chat', json={'history': []}).status_code == 400


def test_ollama_tryon_is_text_only(client, tryon_body):
    body = client.post('/api/ollama/generate-tryon', json=tryon_body).get_json()
    assert body['fallback'] is True
    assert body['description'] == 'A breezy linen look.'


def test_ollama_weather(client):
    body = client.post('/api/ollama/get-weather', json={'locationQuery': 'Rome'}).get_json()
    assert body['sources'] == []
    assert 'simulated' in body['text']


class RelaySession:
    """Routes RetryingClient posts into the Flask test client"""

    def __init__(self, flask_client, response_cls):
        self.flask_client = flask_client
        self.response_cls = response_cls
        self.posts = 0

    def post(self, url, json=None, timeout=None):
        self.posts += 1
        response = self.flask_client.post(urlparse(url).path, json=json)
        return self.response_cls(response.status_code, response.get_data(as_text=True))


def test_video_timeout_starts_a_single_job(client, gemini, png_base64, fake_response):
    gemini.rotation_error = VideoTimeoutError("Video generation did not finish within 600s")
    relay = RelaySession(client, fake_response)
    http = RetryingClient('http://relay.test', session=relay, sleep=lambda s: None, rand=lambda a, b: 0.0)

    with pytest.raises(VideoTimeoutError):
        StylistClient(http).generate_rotation_video(png_base64, 'emerald suit')

    assert relay.posts == 1
    assert len([call for call in gemini.calls if call[0] == 'rotation']) == 1


@pytest.mark.parametrize('uri', [
    'https://generativelanguage.googleapis.com/v1beta/models',
    'https://generativelanguage.googleapis.com/v1beta/files',
    'https://generativelanguage.googleapis.com/v1beta/files/abc:download/../../models',
    'http://generativelanguage.googleapis.com/v1beta/files/abc:download',
])
def test_rotation_video_only_proxies_file_downloads(client, uri):
    response = client.get('/api/rotation-video', query_string={'uri': uri})
    assert response.status_code == 400
    assert response.get_json()['code'] == 'invalid_request'


def test_rotation_video_accepts_v1_downloads(client):
    uri = 'https://generativelanguage.googleapis.com/v1/files/xyz:download?alt=media'
    assert client.get('/api/rotation-video', query_string={'uri': uri}).status_code == 200


@pytest.mark.parametrize('history', [['hi'], [None], [{'role': 'user', 'text': 'ok'}, 42]])
def test_stylist_chat_rejects_malformed_history(client, history):
    response = client.post('/api/stylist-chat', json={'history': history, 'newMessage': 'Hat?'})
    assert response.status_code == 400
    assert response.get_json()['code'] == 'invalid_request'


def test_second_rotation_on_same_socket_stays_cancellable():
    first, second = threading.Event(), threading.Event()
    register_rotation_job('sock-1', first)
    register_rotation_job('sock-1', second)

    release_rotation_job('sock-1', first)

    assert cancel_rotation_job('sock-1') is True
    assert second.is_set()
    assert not first.is_set()
    release_rotation_job('sock-1', second)
    assert cancel_rotation_job('sock-1') is False
