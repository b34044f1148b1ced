# policy_qa/errors.py
"""
Error taxonomy for the Q&A engine.

    PolicyQAError
    ├── ValidationError          bad input, rejected before downstream calls
    ├── NotFoundError            unknown document / override id
    ├── DownstreamUnavailable    provider or index unreachable
    │   ├── EmbeddingError
    │   ├── GenerationError
    │   └── IndexUnavailable
    └── DownstreamTimeout        external call exceeded its bound
"""

from typing import Optional


class PolicyQAError(Exception):

    status_code = 500

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(PolicyQAError):

    status_code = 400


class NotFoundError(PolicyQAError):

    status_code = 404


class DownstreamUnavailable(PolicyQAError):

    status_code = 502


class EmbeddingError(DownstreamUnavailable):
    pass


class GenerationError(DownstreamUnavailable):
    pass


class IndexUnavailable(DownstreamUnavailable):
    pass


class DownstreamTimeout(PolicyQAError):

    status_code = 504

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            f"{operation} timed out after {timeout_seconds:.1f}s"
        )
        self.operation = operation
        self.timeout_seconds = timeout_seconds
