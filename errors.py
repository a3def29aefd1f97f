from __future__ import annotations

from typing import Optional


class MirrorTubeError(Exception):
    pass


class TransportError(MirrorTubeError):
    """Connection failure or a non-success status from upstream."""

    def __init__(self, url: str, status_code: Optional[int] = None, detail: str = ""):
        self.url = url
        self.status_code = status_code
        self.detail = detail
        msg = f"upstream request failed url={url}"
        if status_code is not None:
            msg += f" status={status_code}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class DecodeError(TransportError):
    """Payload could not be decoded as text or JSON."""


class DataApiError(MirrorTubeError):
    pass


class ApiKeyMissingError(DataApiError):
    def __init__(self) -> None:
        super().__init__("YOUTUBE_API_KEY is not configured")


class RequestRejectedError(DataApiError):
    def __init__(self, status_code: int, url: str = ""):
        self.status_code = status_code
        self.url = url
        super().__init__(f"data api rejected request status={status_code}")
