from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Tuple

from thumbforge.api.v1.schemas import JobStatus, PipelineVersion, Priority, QualityTier


def utcnow() -> datetime:
    """Return an explicit, timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Box:
    """
    Axis-aligned rectangle in pixel coordinates.

    Edges are half-open: two boxes that only touch do not intersect.
    """

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def intersects(self, other: Box) -> bool:
        return (
            self.x < other.right
            and other.x < self.right
            and self.y < other.bottom
            and other.y < self.bottom
        )

    def contains(self, other: Box) -> bool:
        return (
            other.x >= self.x
            and other.y >= self.y
            and other.right <= self.right
            and other.bottom <= self.bottom
        )


@dataclass(frozen=True, slots=True)
class ReferenceImage:
    """A reference face uploaded with the request."""

    data: bytes
    mime_type: str = "image/png"


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """
    Immutable input for one job.

    Built once from the accepted job record; nothing downstream mutates it.
    Placement hints are preset names understood by the text layout fitter
    (e.g. "rightCenter") for text, and "left" / "right" / "center" for the
    subject.
    """

    brief: str
    niche: str = ""
    creator_style: str = ""
    expression: str = ""
    reference_faces: Tuple[ReferenceImage, ...] = ()
    desired_text: str | None = None
    variant_count: int = 2
    quality_tier: QualityTier = QualityTier.PRO
    priority: Priority = Priority.QUALITY
    text_position: str | None = None
    subject_position: str | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.variant_count <= 5:
            raise ValueError(f"variant_count must be between 1 and 5, got {self.variant_count}")

    @property
    def has_face(self) -> bool:
        return len(self.reference_faces) > 0

    @property
    def has_text(self) -> bool:
        return bool(self.desired_text and self.desired_text.strip())


@dataclass(frozen=True, slots=True)
class SynthesisBackend:
    """Static capability descriptor for one image-synthesis backend."""

    id: str
    name: str
    latency_seconds: float
    cost: float
    quality_score: int
    strengths: FrozenSet[str] = frozenset()
    weaknesses: FrozenSet[str] = frozenset()
    # Backends that cannot run without a reference face.
    requires_face: bool = False


@dataclass(frozen=True, slots=True)
class RoutingDecision:
    """Which backend to call for a request, what to fall back to, and why."""

    backend_id: str
    fallback_id: str
    reason: str


@dataclass(slots=True)
class QualityScore:
    """
    Heuristic quality judgement for a single image.

    `breakdown` holds the rounded sub-scores keyed by face, composition,
    text_readability, color_harmony, technical and style_adherence. `details`
    keeps the raw metrics each sub-analysis produced, for debugging.
    """

    final_score: float
    breakdown: Dict[str, int]
    recommendation: str
    details: Dict[str, object] = field(default_factory=dict)
    # Names of sub-analyses that failed and were replaced by a default.
    degraded: List[str] = field(default_factory=list)


@dataclass(slots=True)
class Candidate:
    """
    One raw synthesis result.

    Owned by the selector that created it until it is scored; only the
    survivors are turned into variants.
    """

    image: bytes
    backend_id: str
    index: int
    prompt: str = ""
    score: QualityScore | None = None


@dataclass(frozen=True, slots=True)
class FocalPoint:
    """Likely subject location, in the pixel space of the analyzed image."""

    x: float
    y: float
    strength: float


@dataclass(frozen=True, slots=True)
class NegativeSpace:
    """A uniform grid cell suitable for text, in the analyzed image's pixel space."""

    x: float
    y: float
    width: float
    height: float
    uniformity: float
    region_size: int
    brightness: float


@dataclass(frozen=True, slots=True)
class TextPosition:
    """Candidate or chosen text anchor point. `y` is the vertical center of the text block."""

    x: float
    y: float
    anchor: str
    score: float
    zone: str
    # True if the zone's text box hit the duration overlay and was excluded.
    blocked: bool = False


@dataclass(frozen=True, slots=True)
class TextColor:
    """Recommended overlay colors and the background luminance that justified them."""

    fill: str
    stroke: str
    shadow: str
    bg_luminance: float
    reason: str


@dataclass(slots=True)
class CompositionAnalysis:
    """
    Content-aware analysis of a candidate image for text placement.

    Focal points and negative space are reported in the image's own pixel
    coordinates, ranked strongest/most uniform first.
    """

    width: int
    height: int
    best_position: TextPosition
    text_color: TextColor
    confidence: float
    focal_points: List[FocalPoint] = field(default_factory=list)
    negative_spaces: List[NegativeSpace] = field(default_factory=list)
    ranked_positions: List[TextPosition] = field(default_factory=list)
    # Set when analysis failed and the documented fallback position was returned.
    fallback: bool = False


@dataclass(slots=True)
class TextLayout:
    """
    Placement contract for the overlay text of one variant.

    `x`/`y` are the anchor point on the canvas (`y` is the block's vertical
    center); `width`/`height` describe the fitted block.
    """

    x: int
    y: int
    anchor: str
    font_size: int
    lines: List[str]
    fits: bool
    position_adjusted: bool
    width: int = 0
    height: int = 0
    line_height: int = 0
    font_family: str = "Impact"
    font_weight: int = 900
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Variant:
    """A finalized, delivered image. Created once and never modified."""

    label: str
    image: bytes
    score: QualityScore
    backend_id: str
    layout: TextLayout | None = None
    media_type: str = "image/png"


@dataclass(slots=True)
class PipelineResult:
    """Outcome of a successful orchestration run."""

    variants: List[Variant]
    pipeline_version: PipelineVersion
    routing: RoutingDecision | None = None
    warnings: List[str] = field(default_factory=list)
    # Failure messages of pipeline versions attempted before this one.
    fallback_errors: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class Job:
    """
    Internal representation of a thumbnail job.

    This is intentionally separate from API schemas so we can evolve internal
    fields (e.g. storage details) without breaking the API.
    """

    id: str
    request: GenerationRequest
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    variants: List[Variant] = field(default_factory=list)
    # Files the variants were persisted to, keyed by label.
    variant_paths: Dict[str, str] = field(default_factory=dict)
    pipeline_version: PipelineVersion | None = None
    fallback_errors: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    error: str | None = None

    def touch(self) -> None:
        self.updated_at = utcnow()
