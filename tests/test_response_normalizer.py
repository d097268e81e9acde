import base64

from google.genai import types

from models.schemas import Source
from services.response_normalizer import normalize, parse_json_text


def test_text_found_in_each_known_location():
    assert normalize({'text': 'A'}).text == 'A'
    assert normalize({'candidates': [{'content': {'parts': [{'text': 'B'}]}}]}).text == 'B'
    assert normalize({'output': [{'text': 'C'}]}).text == 'C'


def test_ollama_shapes():
    assert normalize({'message': {'role': 'assistant', 'content': 'hi'}}).text == 'hi'
    assert normalize({'response': 'generated'}).text == 'generated'


def test_missing_text_uses_default():
    assert normalize({}, default_text='Weather data unavailable').text == 'Weather data unavailable'
    assert normalize({'candidates': []}).text == ''


def test_non_dict_input_never_raises():
    result = normalize(None, default_text='x')
    assert result.text == 'x'
    assert result.sources == ()
    assert result.image is None
    assert normalize(['unexpected']).text == ''


def test_sources_drop_empty_entries():
    envelope = {
        'candidates': [{
            'content': {'parts': [{'text': 'Paris: 18°C, Cloudy'}]},
            'groundingMetadata': {'groundingChunks': [
                {'web': {'title': 'weather.com', 'uri': 'https://weather.com/paris'}},
                {'web': {'title': '', 'uri': ''}},
                {'retrievedContext': {}},
            ]},
        }]
    }
    result = normalize(envelope)
    assert result.sources == (Source(title='weather.com', uri='https://weather.com/paris'),)


def test_flat_sources_from_relay():
    result = normalize({'text': 'Oslo: -3°C', 'sources': [{'title': 'yr.no', 'uri': 'https://yr.no'}, {}]})
    assert result.sources == (Source(title='yr.no', uri='https://yr.no'),)


def test_inline_image_becomes_data_uri():
    envelope = {'candidates': [{'content': {'parts': [
        {'text': 'Here you go'},
        {'inlineData': {'mimeType': 'image/png', 'data': 'QUJD'}},
    ]}}]}
    assert normalize(envelope).image == 'data:image/png;base64,QUJD'


def test_relay_image_field_passes_through():
    assert normalize({'image': 'data:image/jpeg;base64,QUJD'}).image == 'data:image/jpeg;base64,QUJD'


def test_parsed_only_when_expected():
    envelope = {'text': '{"description": "X", "advice": "Y"}'}
    assert normalize(envelope).parsed is None
    assert normalize(envelope, expect_json=True).parsed == {'description': 'X', 'advice': 'Y'}


def test_parse_failure_degrades_to_none():
    assert normalize({'text': 'not json at all'}, expect_json=True).parsed is None
    assert normalize({'text': '[1, 2]'}, expect_json=True).parsed is None


def test_fenced_json_is_parsed():
    assert parse_json_text('```json\n{"advice": "wear linen"}\n```') == {'advice': 'wear linen'}


def test_existing_parsed_object_is_used():
    result = normalize({'text': 'ignored', 'parsed': {'description': 'X'}}, expect_json=True)
    assert result.parsed == {'description': 'X'}


def test_video_operation_handle():
    envelope = {
        'name': 'operations/123',
        'done': True,
        'response': {'generatedVideos': [{'video': {'uri': 'https://example.com/v.mp4'}}]},
    }
    operation = normalize(envelope).operation
    assert operation.done is True
    assert operation.name == 'operations/123'
    assert operation.uri == 'https://example.com/v.mp4'


def test_plain_text_envelope_has_no_operation():
    assert normalize({'text': 'A'}).operation is None


def test_sdk_response_object():
    raw_image = b'\x89PNG fake bytes'
    response = types.GenerateContentResponse(candidates=[
        types.Candidate(content=types.Content(role='model', parts=[
            types.Part(text='A look for you'),
            types.Part(inline_data=types.Blob(data=raw_image, mime_type='image/png')),
        ]))
    ])
    result = normalize(response)
    assert result.text == 'A look for you'
    assert result.image == 'data:image/png;base64,' + base64.b64encode(raw_image).decode('ascii')
