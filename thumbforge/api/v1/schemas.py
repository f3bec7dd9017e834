from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """High-level lifecycle states for a thumbnail job."""

    PENDING = "pending"
    GENERATING = "generating"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


class QualityTier(str, Enum):
    """Commercial tier; controls how many candidates are generated and whether they are scored."""

    BASIC = "basic"
    PRO = "pro"
    PREMIUM = "premium"


class Priority(str, Enum):
    """What the caller cares about most when a backend is chosen."""

    QUALITY = "quality"
    SPEED = "speed"
    COST = "cost"


class PipelineVersion(str, Enum):
    """
    Orchestration strategies, richest first.

    The enum order is the fallback order: each later version drops one more
    feature of the one before it.
    """

    V9 = "v9-pro"
    V8 = "v8-viral"
    V3 = "v3-standard"
    V2 = "v2-baseline"


class ScoreBreakdown(BaseModel):
    """Rounded sub-scores behind a final quality score."""

    face: int = Field(..., description="Face presence/placement score.")
    composition: int = Field(..., description="Negative space, focal clarity and balance.")
    text_readability: int = Field(..., description="How readable overlay text will be at the best zone.")
    color_harmony: int = Field(..., description="Saturation, vibrancy and channel spread.")
    technical: int = Field(..., description="Exposure, contrast and sharpness.")
    style_adherence: int = Field(..., description="Fit with the creator style's preferences.")


class QualityScoreOut(BaseModel):
    """Quality score attached to a delivered variant."""

    final_score: float = Field(..., ge=0, le=100, description="Weighted score in [0, 100].")
    recommendation: str = Field(
        ...,
        description="One of excellent, good, acceptable, needs-improvement, poor.",
    )
    breakdown: ScoreBreakdown
    degraded: List[str] = Field(
        default_factory=list,
        description="Sub-analyses that failed and were replaced by their neutral default.",
    )


class TextLayoutOut(BaseModel):
    """Final placement of the overlay text on the 1920x1080 canvas."""

    x: int
    y: int = Field(..., description="Vertical center of the text block.")
    anchor: str = Field(..., description="start, middle or end.")
    font_size: int
    lines: List[str]
    fits: bool
    position_adjusted: bool
    warnings: List[str] = Field(default_factory=list)


class VariantOut(BaseModel):
    """A finalized image as exposed to clients."""

    label: str = Field(..., description="Variant label: A, B, ...")
    url: str = Field(..., description="Relative URL serving the image bytes.")
    backend: str = Field(..., description="Backend that synthesized the source image.")
    score: QualityScoreOut
    layout: TextLayoutOut | None = None


class JobCreateResponse(BaseModel):
    """Response returned when a new job is accepted."""

    job_id: str = Field(..., description="Server-generated unique job identifier.")
    status: JobStatus = Field(
        default=JobStatus.PENDING,
        description="Initial status of the job (always 'pending' on creation).",
    )
    variant_count: int = Field(..., ge=1, le=5, description="Number of variants requested.")
    quality_tier: QualityTier


class JobSummary(BaseModel):
    """Lightweight view of a job suitable for listings."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique job identifier.")
    status: JobStatus = Field(..., description="Current lifecycle status for the job.")


class JobDetail(BaseModel):
    """Detailed view of a single job."""

    id: str = Field(..., description="Unique job identifier.")
    status: JobStatus = Field(..., description="Current lifecycle status for the job.")
    attempts: int = Field(..., description="How many times the worker has run this job.")
    pipeline_version: PipelineVersion | None = Field(
        default=None,
        description="Pipeline version that produced the variants.",
    )
    fallback_errors: Dict[str, str] = Field(
        default_factory=dict,
        description="Failure messages of richer pipeline versions tried first.",
    )
    warnings: List[str] = Field(default_factory=list)
    error: str | None = Field(default=None, description="Failure message for failed jobs.")
    variants: List[VariantOut] = Field(default_factory=list)
    created_at: str = Field(
        ...,
        description="Job creation timestamp in ISO 8601 format (UTC).",
    )
    updated_at: str = Field(
        ...,
        description="Last modification timestamp in ISO 8601 format (UTC).",
    )


class BackendInfo(BaseModel):
    """Static description of a synthesis backend."""

    id: str
    name: str
    latency_seconds: float
    cost: float
    quality_score: int
    strengths: List[str]
    weaknesses: List[str]
    requires_face: bool
