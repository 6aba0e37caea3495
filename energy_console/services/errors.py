"""Domain errors raised by the builder services; routers map them to HTTP codes."""

from __future__ import annotations


class ConsoleError(Exception):
    status_code = 400

    def __init__(self, message: str, *, details: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundError(ConsoleError):
    status_code = 404


class ConflictError(ConsoleError):
    status_code = 409


class ValidationFailed(ConsoleError):
    status_code = 400


class RateLimited(ConsoleError):
    status_code = 429
