"""
Error taxonomy for the generation engine.

Heuristic failures (AnalysisDegraded) are recovered where they happen and
never reach callers. Everything else either makes a pipeline version fail,
which the fallback chain absorbs, or fails the job outright.
"""

from __future__ import annotations

from typing import Dict


class GenerationError(RuntimeError):
    """Base class for failures raised by the generation engine."""


class AnalysisDegraded(GenerationError):
    """A heuristic sub-analysis failed; callers substitute its neutral default."""

    def __init__(self, analysis: str, cause: Exception) -> None:
        super().__init__(f"{analysis} analysis failed: {cause}")
        self.analysis = analysis
        self.cause = cause


class BackendError(GenerationError):
    """
    A synthesis backend call failed.

    `code` is one of the keys of BACKEND_ERROR_CODES so callers can branch on
    the failure kind without parsing messages.
    """

    def __init__(
        self,
        message: str,
        code: str = "SERVER_ERROR",
        status_code: int | None = None,
        retryable: bool | None = None,
        backend_id: str | None = None,
    ) -> None:
        super().__init__(message)
        default_status, default_retryable = BACKEND_ERROR_CODES.get(code, (500, False))
        self.code = code
        self.status_code = status_code if status_code is not None else default_status
        self.retryable = retryable if retryable is not None else default_retryable
        self.backend_id = backend_id


# code -> (HTTP status, retryable)
BACKEND_ERROR_CODES: Dict[str, tuple[int, bool]] = {
    "RATE_LIMITED": (429, True),
    "UNAUTHORIZED": (401, False),
    "INVALID_INPUT": (400, False),
    "NOT_CONFIGURED": (503, False),
    "TIMEOUT": (504, True),
    "SERVER_ERROR": (500, True),
    "NO_OUTPUT": (502, False),
}


class BackendUnavailable(BackendError):
    """The chosen backend cannot run this request (e.g. it needs a face and none was given)."""

    def __init__(self, message: str, backend_id: str | None = None) -> None:
        super().__init__(message, code="INVALID_INPUT", backend_id=backend_id)


class CandidateFailed(GenerationError):
    """One synthesis attempt failed; the selector skips it."""

    def __init__(self, index: int, cause: Exception) -> None:
        super().__init__(f"Candidate {index} failed: {cause}")
        self.index = index
        self.cause = cause


class AllCandidatesFailed(GenerationError):
    """Every synthesis attempt in a pass failed."""


class PipelineVersionFailed(GenerationError):
    """A pipeline version could not reach FINALIZED."""

    def __init__(self, version: str, stage: str, message: str) -> None:
        super().__init__(f"{version} failed at {stage}: {message}")
        self.version = version
        self.stage = stage
        self.detail = message


class AllPipelineVersionsFailed(GenerationError):
    """Every pipeline version in the fallback chain failed; the job fails."""

    def __init__(self, errors: Dict[str, str]) -> None:
        message = next(reversed(errors.values()), "No pipeline versions configured")
        super().__init__(message)
        self.errors = dict(errors)
