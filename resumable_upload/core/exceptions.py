"""
Error taxonomy for the upload core.

Every error carries the HTTP status the API layer reports it with.
Nothing here is retried server-side; the client resends.
"""


class UploadError(Exception):
    """Base class for all upload failures"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ParameterError(UploadError):
    """Missing or malformed request input. No side effects happened."""

    status_code = 400


class IntegrityError(UploadError):
    """Assembled content does not match the claimed hash"""

    status_code = 400

    def __init__(self, message: str, expected: str = "", actual: str = ""):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class MissingChunkError(UploadError):
    """A chunk expected during assembly is absent"""

    def __init__(self, content_hash: str, index: int):
        super().__init__(f"Chunk {index} missing for {content_hash}")
        self.content_hash = content_hash
        self.index = index


class StorageError(UploadError):
    """Underlying filesystem or index store failure"""


class SessionBusyError(UploadError):
    """Another request holds the session's assembly lock"""

    status_code = 409
