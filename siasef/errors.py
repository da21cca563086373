"""Exception hierarchy for the Si Asef RAG service.

Only conditions that abort an operation are exceptions. Degraded embeddings
and unresolvable citation markers are reported as structured log events
instead, because the pipeline keeps going when they occur.
"""


class SiAsefError(Exception):
    """Base class for all service errors."""


class EmptyExtractionError(SiAsefError):
    """Extracted document text is empty or whitespace-only."""

    def __init__(self, document_name: str = ""):
        self.document_name = document_name
        detail = f" from '{document_name}'" if document_name else ""
        super().__init__(f"Could not extract text{detail}")


class UnsupportedFileTypeError(SiAsefError):
    """Upload is not a format the text intake accepts."""


class DocumentNotFoundError(SiAsefError):
    """No document exists with the requested id."""


class ProviderUnavailableError(SiAsefError):
    """The LLM or embedding provider failed or is not reachable."""


class ProviderUnreachableError(ProviderUnavailableError):
    """The provider could not be contacted at all (connection or timeout)."""


class DimensionMismatchError(SiAsefError):
    """Two vectors that must be compared have different lengths."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Dimension mismatch: expected {expected}, got {actual}")
