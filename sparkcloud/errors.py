"""Exception types shared by the API, device manager and webhook engine."""

from __future__ import annotations


class HttpError(Exception):
    """An error that maps directly onto an HTTP response."""

    status: int = 400

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class BadRequestError(HttpError):
    status = 400


class NotFoundError(HttpError):
    status = 404


class LimitExceededError(HttpError):
    status = 400


class WebhookCallError(Exception):
    """A webhook call that failed on the network or returned a non-2xx status."""

    def __init__(self, message: str, status: int | None = None, body: bytes = b"") -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body
