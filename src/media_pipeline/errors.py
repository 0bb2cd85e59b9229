"""Error taxonomy for the media ingestion pipeline.

Every collaborator boundary (metadata provider, acquisition, transcription,
store) raises a PipelineError subclass carrying an explicit ErrorKind. Errors
coming from third-party SDKs are mapped onto the same kinds by
classify_error(), which falls back to inspecting the error text and, when
nothing matches, treats the failure as transient.
"""

from enum import Enum

import openai


class ErrorKind(str, Enum):
    """Enumerated failure kinds used for retry decisions."""

    AUTHORIZATION = "authorization"
    INVALID_INPUT = "invalid_input"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    UNSUPPORTED_INPUT = "unsupported_input"
    CONFIGURATION = "configuration"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self not in PERMANENT_KINDS


PERMANENT_KINDS = frozenset(
    {
        ErrorKind.AUTHORIZATION,
        ErrorKind.INVALID_INPUT,
        ErrorKind.PAYLOAD_TOO_LARGE,
        ErrorKind.UNSUPPORTED_INPUT,
        ErrorKind.CONFIGURATION,
    }
)

# Order matters: "too large" is checked before "invalid" so an
# "invalid request: file too large" message maps to PAYLOAD_TOO_LARGE.
_PERMANENT_MARKERS: tuple[tuple[str, ErrorKind], ...] = (
    ("unauthorized", ErrorKind.AUTHORIZATION),
    ("too large", ErrorKind.PAYLOAD_TOO_LARGE),
    ("unsupported", ErrorKind.UNSUPPORTED_INPUT),
    ("invalid", ErrorKind.INVALID_INPUT),
)


class ProcessingStage(str, Enum):
    """Pipeline stage in which a failure happened."""

    INGESTION = "ingestion"
    DOWNLOAD = "download"
    TRANSCRIPTION = "transcription"
    STORAGE = "storage"


class PipelineError(Exception):
    """Base error raised at pipeline collaborator boundaries."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        stage: ProcessingStage | None = None,
    ):
        self.message = message
        self.kind = kind
        self.stage = stage
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class MetadataError(PipelineError):
    """Media metadata provider failure. Fatal for an ingestion run."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.NETWORK):
        super().__init__(message, kind, ProcessingStage.INGESTION)


class AcquisitionError(PipelineError):
    """Raw media download failure."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.NETWORK):
        super().__init__(message, kind, ProcessingStage.DOWNLOAD)


class TranscriptionError(PipelineError):
    """Transcription service failure."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN):
        super().__init__(message, kind, ProcessingStage.TRANSCRIPTION)


class StorageError(PipelineError):
    """Persistent document store failure."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.NETWORK):
        super().__init__(message, kind, ProcessingStage.STORAGE)


def kind_from_message(message: str) -> ErrorKind | None:
    """Map an error description onto a permanent kind, if it names one."""
    normalized = message.lower()
    for marker, kind in _PERMANENT_MARKERS:
        if marker in normalized:
            return kind
    return None


def _kind_from_openai(error: Exception) -> ErrorKind | None:
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ErrorKind.AUTHORIZATION
    if isinstance(error, openai.RateLimitError):
        return ErrorKind.RATE_LIMITED
    if isinstance(error, openai.APITimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(error, openai.APIConnectionError):
        return ErrorKind.NETWORK
    if isinstance(error, openai.UnprocessableEntityError):
        return ErrorKind.UNSUPPORTED_INPUT
    if isinstance(error, openai.APIStatusError):
        if error.status_code == 413:
            return ErrorKind.PAYLOAD_TOO_LARGE
        if error.status_code == 400:
            # 400s from the audio endpoint cover both malformed requests and
            # oversized uploads; the message tells them apart.
            return kind_from_message(str(error)) or ErrorKind.INVALID_INPUT
        if error.status_code >= 500:
            return ErrorKind.NETWORK
    return None


def classify_error(error: BaseException) -> ErrorKind:
    """Classify an exception for retry decisions.

    Args:
        error: Exception raised by a pipeline stage.

    Returns:
        The ErrorKind for the exception. Unrecognized errors are UNKNOWN,
        which is retryable.
    """
    if isinstance(error, PipelineError):
        return error.kind

    if isinstance(error, Exception):
        kind = _kind_from_openai(error)
        if kind is not None:
            return kind

    if isinstance(error, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorKind.NETWORK

    return kind_from_message(str(error)) or ErrorKind.UNKNOWN


def is_retryable(error: BaseException) -> bool:
    """Return True when the error should be retried."""
    return classify_error(error).retryable
