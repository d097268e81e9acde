import base64
import io
import json

import pytest
import requests
from PIL import Image


class FakeResponse:
    """Minimal stand-in for requests.Response"""

    def __init__(self, status_code=200, body=None, reason=''):
        self.status_code = status_code
        self.reason = reason
        if body is None:
            self.text = ''
        elif isinstance(body, str):
            self.text = body
        else:
            self.text = json.dumps(body)

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """
    Replays a scripted sequence of responses (or exceptions) for POSTs.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append({'url': url, 'json': json, 'timeout': timeout})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def png_bytes():
    buffer = io.BytesIO()
    Image.new('RGB', (32, 48), (200, 30, 30)).save(buffer, 'PNG')
    return buffer.getvalue()


@pytest.fixture
def png_base64(png_bytes):
    return base64.b64encode(png_bytes).decode('ascii')


@pytest.fixture
def connection_error():
    return requests.ConnectionError("connection refused")
