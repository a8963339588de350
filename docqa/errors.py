"""Error taxonomy for docqa.

Validation errors are raised before any external call. Provider errors wrap
failures of the embedding gateway, the vector index or the chat model.
"""


class DocQAError(Exception):
    """Base class for all docqa errors."""


class InvalidInputError(DocQAError, ValueError):
    """Input rejected before reaching any external collaborator."""


class ProviderError(DocQAError, RuntimeError):
    """An external collaborator failed."""


class EmbeddingError(ProviderError):
    """The embedding gateway failed or returned an unusable vector."""


class VectorIndexError(ProviderError):
    """The vector index failed to read or write."""


class RankingUnavailableError(VectorIndexError):
    """The index cannot serve its packaged ranking function right now."""


class DimensionMismatchError(VectorIndexError, ValueError):
    """A vector does not match the dimension of the index."""

    def __init__(self, expected: int, actual: int, what: str = "Embedding"):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{what} dimension mismatch: expected {expected}, got {actual}"
        )


class RetrievalError(ProviderError):
    """A query could not be served."""


class SynthesisError(ProviderError):
    """The answer-generation call failed."""


class IngestionError(ProviderError):
    """One or more chunks of a document failed to ingest.

    The per-chunk outcomes are available on ``result``.
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result
