import pytest

from models.schemas import Source
from services.errors import NoImageReturnedError, ProviderError, QuotaExhaustedError, ServerError
from services.http_client import RetryingClient
from services.stylist_client import (
    DEFAULT_ADVICE,
    IMPROVISED_ADVICE,
    OllamaStylistClient,
    StylistClient,
    build_client,
)


def client_for(session, cls=StylistClient):
    http = RetryingClient('http://relay.test', session=session, sleep=lambda s: None, rand=lambda a, b: 0.0)
    return cls(http)


def test_weather_with_sources(fake_session, fake_response):
    session = fake_session(fake_response(200, {
        'text': 'Paris: 18°C, Cloudy',
        'sources': [{'title': 'weather.com', 'uri': 'https://weather.com'}],
    }))
    report = client_for(session).get_weather('Paris')

    assert report.text == 'Paris: 18°C, Cloudy'
    assert report.sources == (Source('weather.com', 'https://weather.com'),)
    assert session.requests[0]['json'] == {'locationQuery': 'Paris'}


def test_weather_failure_degrades_to_text(fake_session, fake_response):
    session = fake_session(*[fake_response(500, 'down') for _ in range(3)])
    report = client_for(session).get_weather('Paris')
    assert report.text == 'Unable to fetch weather'
    assert report.sources == ()


def test_suggest_outfit_parses_brief(fake_session, fake_response):
    session = fake_session(fake_response(200, {
        'text': '{"description": "Camel wool coat", "advice": "Warm tones suit you"}',
        'parsed': None,
    }))
    suggestion = client_for(session).suggest_outfit(
        'data:image/png;base64,QUJD', '', ['outerwear'], '', 'Winter', '', 'Woman', 'Olive',
    )

    assert suggestion.description == 'Camel wool coat'
    assert suggestion.advice == 'Warm tones suit you'
    payload = session.requests[0]['json']
    assert payload['imageBase64'] == 'QUJD'
    assert payload['categories'] == ['outerwear']
    assert 'Olive' in payload['prompt']


def test_suggest_outfit_invalid_json_falls_back(fake_session, fake_response):
    session = fake_session(fake_response(200, {'text': 'Sorry, I cannot do JSON today'}))
    suggestion = client_for(session).suggest_outfit('QUJD', 'linen suit', ['tops'], '', 'Summer', '', 'Man', 'Fair')

    assert suggestion.description == 'linen suit'
    assert suggestion.advice == DEFAULT_ADVICE


def test_suggest_outfit_network_failure_improvises(fake_session, fake_response):
    session = fake_session(fake_response(400, {'error': 'bad', 'code': 'invalid_request'}))
    suggestion = client_for(session).suggest_outfit('QUJD', '', ['tops', 'bottoms'], '', 'Summer', '', 'Man', 'Fair')

    assert suggestion.description == 'A stylish tops and bottoms'
    assert suggestion.advice == IMPROVISED_ADVICE


def test_tryon_returns_image(fake_session, fake_response):
    session = fake_session(fake_response(200, {'image': 'data:image/png;base64,QUJD'}))
    result = client_for(session).generate_virtual_try_on('QUJD', 'red dress', ['tops'], 'Summer', '', 'Woman', 'Fair')

    assert result.image == 'data:image/png;base64,QUJD'
    assert result.fallback is False
    assert session.requests[0]['json']['weather'] == 'Standard'


def test_tryon_fallback_response(fake_session, fake_response):
    session = fake_session(fake_response(200, {
        'fallback': True, 'description': 'A flowing red dress', 'note': 'quota reached',
    }))
    result = client_for(session).generate_virtual_try_on('QUJD', 'red dress', ['tops'], 'Summer', '', 'Woman', 'Fair')

    assert result.fallback is True
    assert result.image == ''
    assert result.description == 'A flowing red dress'


def test_tryon_without_image_raises(fake_session, fake_response):
    session = fake_session(fake_response(200, {'text': 'I cannot draw'}))
    with pytest.raises(NoImageReturnedError):
        client_for(session).generate_virtual_try_on('QUJD', 'x', ['tops'], 'Summer', '', 'Woman', 'Fair')


def test_tryon_errors_propagate(fake_session, fake_response):
    body = {'error': 'quota', 'code': 'quota_exhausted'}
    session = fake_session(*[fake_response(429, body) for _ in range(3)])
    with pytest.raises(QuotaExhaustedError):
        client_for(session).generate_virtual_try_on('QUJD', 'x', ['tops'], 'Summer', '', 'Woman', 'Fair')
    assert len(session.requests) == 3


def test_rotation_uri_made_absolute(fake_session, fake_response):
    session = fake_session(fake_response(200, {'uri': '/api/rotation-video?uri=abc'}))
    uri = client_for(session).generate_rotation_video('QUJD', 'red dress')
    assert uri == 'http://relay.test/api/rotation-video?uri=abc'


def test_chat_sends_transcript(fake_session, fake_response):
    session = fake_session(fake_response(200, {'text': 'Try a silk scarf.'}))
    history = [{'role': 'model', 'text': 'Welcome'}]

    assert client_for(session).get_stylist_advice(history, 'Accessories?') == 'Try a silk scarf.'
    assert session.requests[0]['json'] == {'history': history, 'newMessage': 'Accessories?'}


def test_chat_failure_returns_apology(fake_session, connection_error):
    session = fake_session(connection_error, connection_error, connection_error)
    reply = client_for(session).get_stylist_advice([], 'hi')
    assert reply == StylistClient.chat_error_text


def test_ollama_routes_and_fallback(fake_session, fake_response):
    session = fake_session(fake_response(200, {'fallback': True, 'description': 'Linen shirt', 'note': 'text only'}))
    client = client_for(session, OllamaStylistClient)
    result = client.generate_virtual_try_on('QUJD', 'linen shirt', ['tops'], 'Summer', '', 'Man', 'Fair')

    assert session.requests[0]['url'] == 'http://relay.test/api/ollama/generate-tryon'
    assert result.fallback is True
    assert result.description == 'Linen shirt'


def test_ollama_has_no_video():
    client = build_client('http://relay.test', use_ollama=True)
    assert isinstance(client, OllamaStylistClient)
    with pytest.raises(ProviderError):
        client.generate_rotation_video('QUJD', 'x')


def test_weather_non_json_body_degrades(fake_session, fake_response):
    session = fake_session(fake_response(200, '<html>gateway</html>'))
    report = client_for(session).get_weather('Oslo')
    assert report.text == 'Unable to fetch weather'


def test_chat_non_json_body_returns_apology(fake_session, fake_response):
    session = fake_session(fake_response(200, '<html>gateway</html>'))
    assert client_for(session).get_stylist_advice([], 'hi') == StylistClient.chat_error_text


def test_rotation_is_sent_once(fake_session, fake_response):
    session = fake_session(fake_response(502, {'error': 'upstream', 'code': 'server_error'}))
    with pytest.raises(ServerError):
        client_for(session).generate_rotation_video('QUJD', 'red dress')
    assert len(session.requests) == 1
