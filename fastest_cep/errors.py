"""
Error taxonomy for provider calls and the HTTP boundary.
"""

from fastapi import HTTPException, status


class ProviderError(Exception):
    """Base exception for a failed provider call."""

    stage = "internal"

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"{provider} ({self.stage}): {message}")


class RequestConstructionError(ProviderError):
    """The outbound request could not be built."""

    stage = "request"


class TransportError(ProviderError):
    """The request failed on the wire or came back with a non-2xx status."""

    stage = "transport"


class BodyReadError(ProviderError):
    """The response body could not be read."""

    stage = "body-read"


class DecodeError(ProviderError):
    """The response body is not a usable address record."""

    stage = "decode"


class ValidationError(HTTPException):
    """Bad or missing input on the inbound request"""

    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class RaceTimeoutError(HTTPException):
    """No provider answered successfully before the deadline"""

    def __init__(self, detail: str = "Timeout"):
        super().__init__(status_code=status.HTTP_408_REQUEST_TIMEOUT, detail=detail)


class AllProvidersFailedError(HTTPException):
    """Every provider reported a failure"""

    def __init__(self, detail: str = "All providers failed"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
