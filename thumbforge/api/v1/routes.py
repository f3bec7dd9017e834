import logging
from uuid import uuid4

from fastapi import APIRouter, File, Form, HTTPException, Response, UploadFile, status
from fastapi.concurrency import run_in_threadpool

from thumbforge.api.v1.schemas import (
    BackendInfo,
    JobCreateResponse,
    JobDetail,
    JobSummary,
    Priority,
    QualityScoreOut,
    QualityTier,
    ScoreBreakdown,
    TextLayoutOut,
    VariantOut,
)
from thumbforge.models.jobs import GenerationRequest, Job, ReferenceImage, RoutingDecision
from thumbforge.services.jobs import JobStorageError, get_job_queue, get_job_store
from thumbforge.services.rendering import crop_for_platform
from thumbforge.services.routing import get_backend_stats, recommend_backend
from thumbforge.services.zones import PLATFORM_PROFILES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")

MAX_REFERENCE_FACES = 3


def _variant_out(job: Job, variant) -> VariantOut:
    score = variant.score
    layout = variant.layout
    return VariantOut(
        label=variant.label,
        url=f"/api/v1/jobs/{job.id}/variants/{variant.label}",
        backend=variant.backend_id,
        score=QualityScoreOut(
            final_score=round(score.final_score, 1),
            recommendation=score.recommendation,
            breakdown=ScoreBreakdown(**score.breakdown),
            degraded=list(score.degraded),
        ),
        layout=(
            TextLayoutOut(
                x=layout.x,
                y=layout.y,
                anchor=layout.anchor,
                font_size=layout.font_size,
                lines=list(layout.lines),
                fits=layout.fits,
                position_adjusted=layout.position_adjusted,
                warnings=list(layout.warnings),
            )
            if layout is not None
            else None
        ),
    )


async def _require_job(job_id: str) -> Job:
    job = await get_job_store().get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found.",
        )
    return job


def _read_variant(job: Job, label: str) -> tuple[bytes, str]:
    try:
        found = get_job_store().read_variant(job, label)
    except JobStorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to read variant image.",
        ) from exc
    if found is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Variant not found.",
        )
    return found


@router.get("/health", tags=["health"])
async def health_check() -> dict:
    """API v1 health check endpoint."""
    return {"status": "ok", "api_version": "v1"}


@router.post(
    "/jobs",
    response_model=JobCreateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["jobs"],
    summary="Create a new thumbnail generation job",
)
async def create_job(
    brief: str = Form(..., description="What the video is about."),
    niche: str = Form(default="", description="Content niche, e.g. gaming, tech, finance."),
    creator_style: str = Form(default="", description="Creator style (mrbeast, hormozi, ...); empty or 'auto' picks one from the niche."),
    expression: str = Form(default="", description="Facial expression, e.g. shocked, excited."),
    desired_text: str | None = Form(default=None, description="Overlay text; omitted means no text."),
    variant_count: int = Form(default=2, description="How many finished variants to deliver (1-5)."),
    quality_tier: str = Form(default=QualityTier.PRO.value, description="basic, pro or premium."),
    priority: str = Form(default=Priority.QUALITY.value, description="quality, speed or cost."),
    text_position: str | None = Form(default=None, description="Preferred text zone or preset, e.g. rightCenter."),
    subject_position: str | None = Form(default=None, description="left, right or center."),
    reference_faces: list[UploadFile] | None = File(
        default=None,
        description="Optional reference face photos; at most 3 are used.",
    ),
) -> JobCreateResponse:
    """
    Create a new thumbnail job.

    The client sends a multipart/form-data request with the brief fields and
    optionally up to three reference face images. The job is queued and runs
    in the background; poll `GET /jobs/{job_id}` for its status.
    """
    faces = list(reference_faces or [])
    if len(faces) > MAX_REFERENCE_FACES:
        logger.info("Ignoring %d reference faces beyond the first %d", len(faces) - MAX_REFERENCE_FACES, MAX_REFERENCE_FACES)
    references = []
    for upload in faces[:MAX_REFERENCE_FACES]:
        data = await upload.read()
        if data:
            references.append(ReferenceImage(data=data, mime_type=upload.content_type or "image/png"))

    try:
        if not brief.strip():
            raise ValueError("brief must not be empty")
        request = GenerationRequest(
            brief=brief.strip(),
            niche=niche.strip().lower(),
            creator_style=creator_style.strip().lower(),
            expression=expression.strip().lower(),
            reference_faces=tuple(references),
            desired_text=desired_text,
            variant_count=variant_count,
            quality_tier=QualityTier(quality_tier),
            priority=Priority(priority),
            text_position=text_position or None,
            subject_position=subject_position or None,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid job payload: {exc}",
        ) from exc

    job_id = str(uuid4())
    store = get_job_store()

    try:
        job = await store.create_job(job_id=job_id, request=request)
    except JobStorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to persist job and reference images.",
        ) from exc

    get_job_queue().submit(job.id)

    return JobCreateResponse(
        job_id=job.id,
        status=job.status,
        variant_count=request.variant_count,
        quality_tier=request.quality_tier,
    )


@router.get(
    "/jobs/{job_id}",
    response_model=JobDetail,
    tags=["jobs"],
    summary="Get details for a specific job",
)
async def get_job(job_id: str) -> JobDetail:
    """
    Retrieve status, variants and scores for a single job.

    Variant images are not inlined; each variant carries a URL that serves
    its bytes.
    """
    job = await _require_job(job_id)
    return JobDetail(
        id=job.id,
        status=job.status,
        attempts=job.attempts,
        pipeline_version=job.pipeline_version,
        fallback_errors=dict(job.fallback_errors),
        warnings=list(job.warnings),
        error=job.error,
        variants=[_variant_out(job, variant) for variant in job.variants],
        created_at=job.created_at.isoformat(),
        updated_at=job.updated_at.isoformat(),
    )


@router.get(
    "/jobs",
    response_model=list[JobSummary],
    tags=["jobs"],
    summary="List jobs (development use)",
)
async def list_jobs() -> list[JobSummary]:
    """
    List all known jobs.

    Intended primarily for development and debugging; in a real multi-tenant
    system, this would likely be scoped or protected.
    """
    jobs = await get_job_store().list_jobs()
    return [JobSummary.model_validate(job) for job in jobs]


@router.get(
    "/jobs/{job_id}/variants/{label}",
    tags=["jobs"],
    summary="Download a finished variant",
    response_class=Response,
)
async def get_variant_image(job_id: str, label: str) -> Response:
    job = await _require_job(job_id)
    data, media_type = _read_variant(job, label.upper())
    return Response(content=data, media_type=media_type)


@router.get(
    "/jobs/{job_id}/variants/{label}/crops/{platform}",
    tags=["jobs"],
    summary="Download a variant cropped for a platform",
    response_class=Response,
)
async def get_variant_crop(job_id: str, label: str, platform: str) -> Response:
    """Smart-crop a finished variant to one of the platform profiles (youtube, tiktok, ...)."""
    if platform not in PLATFORM_PROFILES:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown platform. Expected one of: {', '.join(PLATFORM_PROFILES)}.",
        )
    job = await _require_job(job_id)
    data, _ = _read_variant(job, label.upper())
    cropped = await run_in_threadpool(crop_for_platform, data, platform)
    return Response(content=cropped, media_type="image/png")


@router.get(
    "/backends",
    response_model=list[BackendInfo],
    tags=["backends"],
    summary="List synthesis backends",
)
async def list_backends() -> list[BackendInfo]:
    return [BackendInfo(**stats) for stats in get_backend_stats()]


@router.get(
    "/backends/recommendation",
    tags=["backends"],
    summary="Which backend a style would be routed to",
)
async def backend_recommendation(style: str = "default", has_face: bool = False) -> dict:
    decision: RoutingDecision = recommend_backend(style, has_face)
    return {
        "backend_id": decision.backend_id,
        "fallback_id": decision.fallback_id,
        "reason": decision.reason,
    }
