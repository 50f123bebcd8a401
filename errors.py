"""
Application errors.

Every failure raised by the task engine carries an HTTP-style status code,
a short title, and a context label naming the operation that failed. The
API layer renders them into the standard response envelope.
"""
from typing import Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, title: str, context: str, status_code: Optional[int] = None):
        super().__init__(f"{context}: {title}")
        self.title = title
        self.context = context
        if status_code is not None:
            self.status_code = status_code


class BadRequest(AppError):
    status_code = 400


class Unauthorized(AppError):
    status_code = 401


class NotFound(AppError):
    status_code = 404


class Conflict(AppError):
    status_code = 409
