from __future__ import annotations


class MetricsError(Exception):
    """Base class for failures inside the metrics pipeline."""


class SamplingError(MetricsError):
    """A host resource reading could not be taken."""

    def __init__(self, resource: str, cause: BaseException | None = None) -> None:
        super().__init__(f"failed to sample {resource}: {cause}" if cause else f"failed to sample {resource}")
        self.resource = resource
        self.cause = cause


class TransmissionError(MetricsError):
    """The backend rejected a push or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
