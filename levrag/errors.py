"""Domain error kinds shared by the pipeline, the stores and the HTTP layer."""

from dataclasses import dataclass
from uuid import uuid4


@dataclass
class ErrorResponse:
    """Structured error body returned by the API."""

    error_code: str
    message: str
    error_id: str

    def to_dict(self) -> dict[str, str | bool]:
        return {
            "ok": False,
            "error": self.message,
            "errorCode": self.error_code,
            "errorId": self.error_id,
        }


class LevRAGError(Exception):
    """Base exception for the RAG service."""

    error_code: str = "LEVRAG_ERROR"
    status_code: int = 500

    def __init__(self, message: str, error_id: str | None = None) -> None:
        self.message = message
        self.error_id = error_id or str(uuid4())
        super().__init__(message)

    def to_response(self, *, redact: bool = False) -> ErrorResponse:
        return ErrorResponse(
            error_code=self.error_code,
            message="Internal server error" if redact else self.message,
            error_id=self.error_id,
        )


class EmbeddingFailure(LevRAGError):
    """The embedding gateway failed or returned no usable vector."""

    error_code = "EMBEDDING_FAILURE"


class CompletionFailure(LevRAGError):
    """Answer generation failed or timed out."""

    error_code = "COMPLETION_FAILURE"


class RepositoryError(LevRAGError):
    """The chunk store could not be read or written."""

    error_code = "REPOSITORY_ERROR"


class SessionNotFound(LevRAGError):
    error_code = "SESSION_NOT_FOUND"
    status_code = 404


class GroundTruthPairNotFound(LevRAGError):
    error_code = "PAIR_NOT_FOUND"
    status_code = 404


class InvalidRequest(LevRAGError):
    """A request body is missing a required field."""

    error_code = "INVALID_REQUEST"
    status_code = 400


class InvalidSettingValue(LevRAGError, ValueError):
    """A configuration value is missing or out of range."""

    error_code = "INVALID_SETTING"
    status_code = 400


class MalformedImportPayload(LevRAGError, ValueError):
    """An imported session or ground-truth payload has the wrong shape."""

    error_code = "MALFORMED_IMPORT"
    status_code = 400
