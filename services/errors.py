"""
Error taxonomy shared by the relay server and the client library.

Every error carries a structured ``code`` so callers branch on the
error class instead of sniffing message strings.
"""

from typing import Optional


class StylistError(Exception):
    """Base class for all FashionMind errors"""

    code = "provider_error"
    http_status = 500
    user_message = "The atelier is currently busy. Please try again."

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message or self.user_message)
        self.message = message or self.user_message
        self.status_code = status_code if status_code is not None else self.http_status

    def to_dict(self) -> dict:
        return {'error': self.message, 'code': self.code}


class ProviderError(StylistError):
    pass


class TransportError(StylistError):
    code = "transport_error"
    http_status = 503
    user_message = "Could not reach the styling service."


class RateLimitedError(StylistError):
    code = "rate_limited"
    http_status = 429
    user_message = "The model is receiving too many requests. Please wait a moment and try again."


class QuotaExhaustedError(RateLimitedError):
    code = "quota_exhausted"
    user_message = "The image generation quota is exhausted. Please try again later."


class ServerError(StylistError):
    code = "server_error"
    http_status = 502
    user_message = "The styling provider had an internal error."


class AuthError(StylistError):
    code = "auth_error"
    http_status = 401
    user_message = "The server's API key is missing or invalid."


class ModelNotFoundError(StylistError):
    code = "model_not_found"
    http_status = 404
    user_message = "The configured model was not found."


class InvalidRequestError(StylistError):
    code = "invalid_request"
    http_status = 400
    user_message = "The request was invalid."


class MalformedResponseError(StylistError):
    code = "malformed_response"
    http_status = 502
    user_message = "The provider returned an unexpected response."


class NoImageReturnedError(MalformedResponseError):
    code = "no_image"
    user_message = "No image returned from model"


class VideoTimeoutError(StylistError):
    code = "video_timeout"
    http_status = 504
    user_message = "Video generation did not finish in time."


class GenerationCancelledError(StylistError):
    code = "cancelled"
    http_status = 409
    user_message = "Generation was cancelled."


class GenerationInProgressError(StylistError):
    code = "generation_in_progress"
    http_status = 409
    user_message = "A generation is already running for this session."


class ConfigurationError(Exception):
    """Raised when required settings are missing"""


_ERRORS_BY_CODE = {
    cls.code: cls for cls in (
        ProviderError, TransportError, RateLimitedError, QuotaExhaustedError,
        ServerError, AuthError, ModelNotFoundError, InvalidRequestError,
        MalformedResponseError, NoImageReturnedError, VideoTimeoutError,
        GenerationCancelledError, GenerationInProgressError,
    )
}

_ERRORS_BY_PROVIDER_STATUS = {
    'RESOURCE_EXHAUSTED': QuotaExhaustedError,
    'UNAUTHENTICATED': AuthError,
    'PERMISSION_DENIED': AuthError,
    'NOT_FOUND': ModelNotFoundError,
    'INVALID_ARGUMENT': InvalidRequestError,
}


def error_from_status(status: int, message: str, code: Optional[str] = None) -> StylistError:
    """
    Rebuild a typed error from an HTTP status and error body.

    Args:
        status: HTTP status code of the response
        message: Error text extracted from the body
        code: Structured error code, when the relay supplied one

    Returns:
        StylistError subclass instance
    """
    if code in _ERRORS_BY_CODE:
        return _ERRORS_BY_CODE[code](message, status_code=status)

    if status == 429:
        cls = RateLimitedError
    elif status in (401, 403):
        cls = AuthError
    elif status == 404:
        cls = ModelNotFoundError
    elif status >= 500:
        cls = ServerError
    elif 400 <= status < 500:
        cls = InvalidRequestError
    else:
        cls = ProviderError
    return cls(message, status_code=status)


def from_provider_exception(exc: Exception) -> StylistError:
    """
    Map an exception raised by a provider SDK into the error taxonomy.

    google-genai ``APIError`` instances carry a numeric ``code`` and a
    canonical ``status`` string; those are used first. Message text is
    only inspected for exceptions without any structured code.
    """
    if isinstance(exc, StylistError):
        return exc

    message = getattr(exc, 'message', None) or str(exc)
    provider_status = getattr(exc, 'status', None)
    status_code = getattr(exc, 'code', None)

    if isinstance(provider_status, str) and provider_status in _ERRORS_BY_PROVIDER_STATUS:
        return _ERRORS_BY_PROVIDER_STATUS[provider_status](message)

    if isinstance(status_code, int):
        if status_code == 429:
            return QuotaExhaustedError(message) if 'quota' in message.lower() else RateLimitedError(message)
        return error_from_status(status_code, message)

    # No structured code available
    if 'RESOURCE_EXHAUSTED' in message:
        return QuotaExhaustedError(message)
    if '429' in message:
        return RateLimitedError(message)
    if '401' in message or 'API key not valid' in message:
        return AuthError(message)
    if 'not found' in message.lower() and 'model' in message.lower():
        return ModelNotFoundError(message)
    return ProviderError(message)
