"""
Generation Errors — whole-request failures of the bundle pipeline.

Only the steps without a safe degradation path raise these: request
validation, concept generation, product selection, and the global deadline.
Everything else (empty searches, enrichment, persistence) degrades instead.
"""

from typing import Optional


class GenerationError(Exception):
    """Base class for fatal generation failures."""

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage


class InvalidRequestError(GenerationError):
    """The request was rejected before any external call was made."""

    def __init__(self, message: str) -> None:
        super().__init__(message, stage="validating")


class ConceptGenerationError(GenerationError):
    """The concept service failed or returned no usable concepts."""

    def __init__(self, message: str = "Failed to generate gift concepts") -> None:
        super().__init__(message, stage="generating_concepts")


class SelectionError(GenerationError):
    """The batched product-selection call failed."""

    def __init__(self, message: str = "Failed to select products for gift bundles") -> None:
        super().__init__(message, stage="selecting")


class GenerationTimeoutError(GenerationError):
    """The pipeline did not finish within its deadline."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"Gift generation timed out after {timeout_seconds:.0f}s",
            stage="failed",
        )
        self.timeout_seconds = timeout_seconds
