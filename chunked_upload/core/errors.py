from enum import Enum
from typing import Any, Optional, Sequence


class ErrorCategory(str, Enum):
    RETRIABLE = "retriable"
    CORRECTABLE = "correctable"
    TERMINAL = "terminal"


class UploadError(Exception):
    """Base class for chunked upload failures.

    ``code`` is stable and safe to return to clients. ``params`` hold
    backend detail that is only meant for the operational log.
    """

    code = "upload-error"
    category = ErrorCategory.TERMINAL
    public_message = "The upload failed."

    def __init__(self, message: Optional[str] = None, params: Sequence[Any] = ()):
        self.params = tuple(params)
        super().__init__(message or self.public_message)


class SessionNotFound(UploadError):
    code = "session-not-found"
    category = ErrorCategory.CORRECTABLE
    public_message = "Upload session not found."

    def __init__(self, session_key: str):
        self.session_key = session_key
        super().__init__(f"Upload session {session_key} not found")


class InvalidSessionState(UploadError):
    code = "invalid-session-state"
    category = ErrorCategory.CORRECTABLE
    public_message = "Upload session is not in a state that allows this operation."

    def __init__(self, session_key: str, status: str):
        self.session_key = session_key
        self.status = status
        super().__init__(f"Upload session {session_key} is {status}")


class InvalidChunkOffset(UploadError):
    code = "invalid-chunk-offset"
    category = ErrorCategory.CORRECTABLE
    public_message = "Chunk offset does not match the upload offset."

    def __init__(self, expected: int, claimed: int):
        self.expected = expected
        self.claimed = claimed
        super().__init__(f"Chunk offset {claimed} does not match upload offset {expected}")


class ChunkSizeMismatch(UploadError):
    code = "chunk-size-mismatch"
    category = ErrorCategory.CORRECTABLE
    public_message = "Declared chunk size does not match the chunk payload."

    def __init__(self, declared: int, actual: int):
        self.declared = declared
        self.actual = actual
        super().__init__(f"Declared chunk size {declared} but received {actual} bytes")


class FileTooLarge(UploadError):
    code = "file-too-large"
    public_message = "The file exceeds the maximum upload size."

    def __init__(self, size: int, max_size: int):
        self.size = size
        self.max_size = max_size
        super().__init__(f"Upload of {size} bytes exceeds maximum of {max_size} bytes")


class ChunkVerificationFailed(UploadError):
    code = "chunk-verification-failed"
    public_message = "The chunk was rejected by verification."

    def __init__(self, reason):
        self.reason = reason
        super().__init__(f"Chunk verification failed: {reason.code}", (reason.detail,))


class VerificationFailed(UploadError):
    code = "verification-failed"
    public_message = "The assembled file was rejected by verification."

    def __init__(self, reason):
        self.reason = reason
        super().__init__(f"Verification failed: {reason.code}", (reason.detail,))


class BackendWriteError(UploadError):
    code = "backend-write-error"
    category = ErrorCategory.RETRIABLE
    public_message = "Storing the chunk failed, retry from the current offset."

    def __init__(self, operation: str, path: str, cause: Sequence[Any]):
        self.operation = operation
        self.path = path
        self.cause = tuple(cause)
        super().__init__(
            f"Error storing file in '{path}' ({operation}): " + "; ".join(str(c) for c in self.cause),
            self.cause,
        )


class ConcatenationFailed(UploadError):
    code = "concatenation-failed"
    category = ErrorCategory.RETRIABLE
    public_message = "Assembling the upload failed, finalize can be retried."

    def __init__(self, failure: Sequence[Any]):
        failure = tuple(failure)
        super().__init__("Error on concatenate: " + "; ".join(str(f) for f in failure), failure)


class PromotionFailed(UploadError):
    code = "promotion-failed"
    public_message = "Moving the assembled file to permanent storage failed."


class UploadIncomplete(UploadError):
    code = "upload-incomplete"
    category = ErrorCategory.CORRECTABLE
    public_message = "Not all announced bytes have been uploaded yet."

    def __init__(self, declared: int, received: int):
        self.declared = declared
        self.received = received
        super().__init__(f"Upload announced {declared} bytes but only {received} were received")
