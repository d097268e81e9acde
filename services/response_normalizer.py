"""
Response normalizer

Provider envelopes are inconsistent across model versions and backends:
text may sit at the top level, inside candidate parts, in an ``output``
list, or in Ollama's ``message``/``response`` fields. Each location is an
extractor; extractors are tried in order and the first hit wins.

Normalization never raises. Missing fields become typed defaults.
"""

import base64
import json
import re
from typing import Any, Callable, List, Optional

from models.schemas import ProviderResponse, Source, VideoOperation


def _get(obj: Any, *path) -> Any:
    """Walk dict keys / list indexes, returning None on any miss."""
    current = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def _field(obj: Any, camel: str, snake: str) -> Any:
    if not isinstance(obj, dict):
        return None
    value = obj.get(camel)
    return value if value is not None else obj.get(snake)


def _non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def as_envelope(raw: Any) -> Any:
    """
    Turn SDK response objects into plain dicts keyed like the REST API.

    google-genai responses are pydantic models; dumping by alias gives
    the same camelCase keys the REST API and the JS SDK use.
    """
    if hasattr(raw, 'model_dump'):
        try:
            return raw.model_dump(mode='python', by_alias=True, exclude_none=True)
        except (TypeError, ValueError):
            return {}
    return raw


def _candidate_parts(envelope: Any) -> List[dict]:
    parts = _get(envelope, 'candidates', 0, 'content', 'parts')
    return parts if isinstance(parts, list) else []


# --- Text extractors ---

def _direct_text(envelope: Any) -> Optional[str]:
    return _non_empty_str(_get(envelope, 'text'))


def _candidate_text(envelope: Any) -> Optional[str]:
    for part in _candidate_parts(envelope):
        text = _non_empty_str(_get(part, 'text'))
        if text:
            return text
    return None


def _output_text(envelope: Any) -> Optional[str]:
    return _non_empty_str(_get(envelope, 'output', 0, 'text'))


def _ollama_chat_text(envelope: Any) -> Optional[str]:
    return _non_empty_str(_get(envelope, 'message', 'content'))


def _ollama_generate_text(envelope: Any) -> Optional[str]:
    return _non_empty_str(_get(envelope, 'response'))


TEXT_EXTRACTORS: List[Callable[[Any], Optional[str]]] = [
    _direct_text,
    _candidate_text,
    _output_text,
    _ollama_chat_text,
    _ollama_generate_text,
]


def extract_text(envelope: Any, default: str = '') -> str:
    for extractor in TEXT_EXTRACTORS:
        text = extractor(envelope)
        if text is not None:
            return text
    return default


def extract_sources(envelope: Any) -> tuple:
    """Grounding citations as Source tuples, dropping empty entries"""
    metadata = _field(_get(envelope, 'candidates', 0), 'groundingMetadata', 'grounding_metadata')
    chunks = _field(metadata, 'groundingChunks', 'grounding_chunks')
    sources = []
    if isinstance(chunks, list):
        for chunk in chunks:
            web = _get(chunk, 'web')
            if not isinstance(web, dict):
                continue
            title = web.get('title') or ''
            uri = web.get('uri') or ''
            if title or uri:
                sources.append(Source(title=title, uri=uri))

    # Relay responses may already carry a flat list
    flat = _get(envelope, 'sources')
    if not sources and isinstance(flat, list):
        for item in flat:
            if isinstance(item, dict) and (item.get('title') or item.get('uri')):
                sources.append(Source(title=item.get('title') or '', uri=item.get('uri') or ''))
    return tuple(sources)


def extract_image(envelope: Any) -> Optional[str]:
    """First inline binary part as a data URI"""
    direct = _get(envelope, 'image')
    if isinstance(direct, str) and direct.startswith('data:'):
        return direct

    for part in _candidate_parts(envelope):
        inline = _field(part, 'inlineData', 'inline_data')
        data = _get(inline, 'data')
        if not data:
            continue
        if isinstance(data, (bytes, bytearray)):
            data = base64.b64encode(bytes(data)).decode('ascii')
        mime_type = _field(inline, 'mimeType', 'mime_type') or 'image/jpeg'
        return f"data:{mime_type};base64,{data}"
    return None


_FENCE_RE = re.compile(r'^```(?:json)?\s*(.*?)\s*```$', re.DOTALL)


def parse_json_text(text: str) -> Optional[dict]:
    """Parse model text as a JSON object, tolerating markdown fences"""
    if not text:
        return None
    candidate = text.strip()
    match = _FENCE_RE.match(candidate)
    if match:
        candidate = match.group(1)
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_operation(envelope: Any) -> Optional[VideoOperation]:
    if not isinstance(envelope, dict) or ('done' not in envelope and 'name' not in envelope):
        return None
    response = envelope.get('response') or envelope.get('result')
    videos = _field(response, 'generatedVideos', 'generated_videos')
    uri = _get(videos, 0, 'video', 'uri')
    error = envelope.get('error')
    if isinstance(error, dict):
        error = error.get('message') or json.dumps(error)
    return VideoOperation(
        name=envelope.get('name') or '',
        done=bool(envelope.get('done')),
        uri=uri,
        error=error,
    )


def normalize(raw: Any, expect_json: bool = False, default_text: str = '') -> ProviderResponse:
    """
    Extract the canonical ``{text, parsed, image, sources, operation}``.

    Args:
        raw: Envelope dict or SDK response object
        expect_json: Parse the text as a JSON object
        default_text: Text used when no extractor matches

    Returns:
        ProviderResponse (never raises)
    """
    try:
        envelope = as_envelope(raw)
        text = extract_text(envelope, default_text)

        parsed = None
        if expect_json:
            existing = _get(envelope, 'parsed')
            parsed = existing if isinstance(existing, dict) else parse_json_text(text)

        return ProviderResponse(
            text=text,
            parsed=parsed,
            image=extract_image(envelope),
            sources=extract_sources(envelope),
            operation=extract_operation(envelope),
        )
    except Exception:
        return ProviderResponse(text=default_text)
