from __future__ import annotations

from http import HTTPStatus
from typing import Optional


class ShareServerError(Exception):
    """Base class for every error raised by shareServer."""


class InvalidRoot(ShareServerError):
    def __init__(self, root: object, reason: str = "not a directory") -> None:
        super().__init__(f"Invalid root directory {root}: {reason}")
        self.root = root


class NoPortAvailable(ShareServerError):
    def __init__(self, preferred: Optional[int], port_min: int, port_max: int) -> None:
        super().__init__(f"No ports available (preferred {preferred}, range {port_min}-{port_max})")
        self.preferred = preferred
        self.port_min = port_min
        self.port_max = port_max


class BindFailed(ShareServerError):
    def __init__(self, host: str, port: int, cause: OSError) -> None:
        super().__init__(f"Could not bind {host}:{port}: {cause}")
        self.host = host
        self.port = port


class CertificateGenerationFailed(ShareServerError):
    pass


class RequestError(ShareServerError):
    """Per-request failure answered with ``status`` instead of crashing the worker."""

    status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.status.phrase)
        self.message = message or self.status.phrase


class AccessDenied(RequestError):
    status = HTTPStatus.FORBIDDEN


class NotFound(RequestError):
    status = HTTPStatus.NOT_FOUND


class MethodNotAllowed(RequestError):
    status = HTTPStatus.METHOD_NOT_ALLOWED


class RangeNotSatisfiable(RequestError):
    status = HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE

    def __init__(self, size: int) -> None:
        super().__init__("Requested range not satisfiable")
        self.size = size
