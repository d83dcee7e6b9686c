from __future__ import annotations

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError


class ReaperError(Exception):
    """Base for every failure the remedial-action engine can surface.

    ``retryable`` tells the loop whether to re-queue the pod.
    """

    retryable = False


class UnitNotFound(ReaperError):
    """The pod vanished between observation and action. Treated as done."""


class Conflict(ReaperError):
    retryable = True


class SerializationFailure(ReaperError):
    pass


class DiffComputationFailure(ReaperError):
    pass


class TransientIOFailure(ReaperError):
    retryable = True


class PermissionDenied(ReaperError):
    pass


class Cancelled(ReaperError):
    # Outcome of an interrupted call is unknown; retry with a fresh read.
    retryable = True


def classify(exc: BaseException) -> ReaperError:
    """Map a platform/client exception onto the error taxonomy."""
    if isinstance(exc, ReaperError):
        return exc
    if isinstance(exc, ApiException):
        status = exc.status or 0
        detail = f"HTTP {status}: {exc.reason}"
        if status == 404:
            return UnitNotFound(detail)
        if status == 409:
            return Conflict(detail)
        if status in (401, 403):
            return PermissionDenied(detail)
        if status == 429 or status >= 500 or status == 0:
            return TransientIOFailure(detail)
        return ReaperError(detail)
    if isinstance(exc, (Urllib3HTTPError, ConnectionError, TimeoutError)):
        return TransientIOFailure(f"{type(exc).__name__}: {exc}")
    return ReaperError(f"{type(exc).__name__}: {exc}")
