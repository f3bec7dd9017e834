"""
Pipeline orchestration and the version fallback chain.

One orchestration run walks these states:

    PROMPT_BUILT -> BACKEND_SELECTED -> CANDIDATES_SCORED -> LAYOUT_COMPUTED -> FINALIZED

Any stage failure moves the run to FAILED for that pipeline version only; the
fallback chain then re-runs the whole request under the next, simpler
version:

- v9-pro:      multi-pass scoring, composition analysis, cinematic prompt
- v8-viral:    no multi-pass scoring
- v3-standard: no composition analysis (preset text positions)
- v2-baseline: minimal prompt
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Mapping, Protocol, Sequence, Tuple, TypeVar

import numpy as np

from thumbforge.api.v1.schemas import PipelineVersion, QualityTier
from thumbforge.models.jobs import (
    Candidate,
    GenerationRequest,
    PipelineResult,
    TextColor,
    TextLayout,
    Variant,
)
from thumbforge.services import prompts, rendering
from thumbforge.services.backends import build_backends
from thumbforge.services.composition import CompositionPlanner
from thumbforge.services.errors import AllPipelineVersionsFailed, GenerationError, PipelineVersionFailed
from thumbforge.services.routing import BackendRouter
from thumbforge.services.scoring import QualityScorer
from thumbforge.services.selection import MultiPassSelector
from thumbforge.services.text_layout import POSITION_PRESETS, TextLayoutFitter, TextStyle, resolve_position

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_SELECTION_SCORE = 60.0
PREMIUM_CANDIDATES = 4
PRO_MIN_CANDIDATES = 2


class PipelineState(str, Enum):
    PROMPT_BUILT = "prompt_built"
    BACKEND_SELECTED = "backend_selected"
    CANDIDATES_SCORED = "candidates_scored"
    LAYOUT_COMPUTED = "layout_computed"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PipelineStrategy:
    """Feature switches that distinguish one pipeline version from another."""

    version: PipelineVersion
    multi_pass: bool
    composition: bool
    cinematic_prompt: bool


STRATEGIES: Mapping[PipelineVersion, PipelineStrategy] = {
    PipelineVersion.V9: PipelineStrategy(PipelineVersion.V9, multi_pass=True, composition=True, cinematic_prompt=True),
    PipelineVersion.V8: PipelineStrategy(PipelineVersion.V8, multi_pass=False, composition=True, cinematic_prompt=True),
    PipelineVersion.V3: PipelineStrategy(PipelineVersion.V3, multi_pass=False, composition=False, cinematic_prompt=True),
    PipelineVersion.V2: PipelineStrategy(PipelineVersion.V2, multi_pass=False, composition=False, cinematic_prompt=False),
}


@dataclass(frozen=True, slots=True)
class TextTreatment:
    stroke_width: int
    shadow_offset: Tuple[int, int]
    default_position: str


TEXT_TREATMENTS: Mapping[str, TextTreatment] = {
    "mrbeast": TextTreatment(18, (12, 12), "rightCenter"),
    "hormozi": TextTreatment(12, (8, 8), "rightCenter"),
    "gadzhi": TextTreatment(6, (4, 4), "topCenter"),
    "gaming": TextTreatment(14, (10, 10), "topCenter"),
}
DEFAULT_TREATMENT = TextTreatment(12, (8, 8), "rightCenter")


class PipelineRunner(Protocol):
    version: PipelineVersion

    def run(self, request: GenerationRequest) -> PipelineResult:
        ...


def candidate_count(request: GenerationRequest) -> int:
    """How many candidates multi-pass scoring generates for the request's tier."""
    if request.quality_tier == QualityTier.PREMIUM:
        return max(PREMIUM_CANDIDATES, request.variant_count)
    if request.quality_tier == QualityTier.PRO:
        return max(PRO_MIN_CANDIDATES, request.variant_count)
    return request.variant_count


class PipelineOrchestrator:
    """
    Runs one pipeline version end to end.

    Collaborators are injected so the fallback chain can share one scorer
    and planner across versions and tests can substitute any stage.
    """

    def __init__(
        self,
        strategy: PipelineStrategy,
        router: BackendRouter,
        scorer: QualityScorer,
        planner: CompositionPlanner | None = None,
        fitter: TextLayoutFitter | None = None,
        selector: MultiPassSelector | None = None,
        min_score: float = MIN_SELECTION_SCORE,
        treatments: Mapping[str, TextTreatment] = TEXT_TREATMENTS,
    ):
        self.strategy = strategy
        self.version = strategy.version
        self.router = router
        self.scorer = scorer
        self.planner = planner or scorer.planner
        self.fitter = fitter or TextLayoutFitter()
        self.selector = selector or MultiPassSelector(scorer)
        self.min_score = min_score
        self.treatments = treatments
        self.state: PipelineState | None = None

    def _stage(self, state: PipelineState, fn: Callable[[], T]) -> T:
        try:
            result = fn()
        except Exception as exc:
            self.state = PipelineState.FAILED
            raise PipelineVersionFailed(self.version.value, state.name, str(exc)) from exc
        self.state = state
        logger.debug("%s reached %s", self.version.value, state.name)
        return result

    def run(self, request: GenerationRequest) -> PipelineResult:
        self.state = None
        style = prompts.style_for_request(request)
        warnings: List[str] = []
        logger.info(f"Running {self.version.value} (style {style}, tier {request.quality_tier.value})")

        prompt = self._stage(PipelineState.PROMPT_BUILT, lambda: self._build_prompt(request, style))
        decision = self._stage(
            PipelineState.BACKEND_SELECTED,
            lambda: self.router.select(
                style=style,
                niche=request.niche,
                has_face=request.has_face,
                priority=request.priority,
            ),
        )
        candidates = self._stage(
            PipelineState.CANDIDATES_SCORED,
            lambda: self._produce_candidates(request, prompt, decision, style, warnings),
        )
        layouts = self._stage(
            PipelineState.LAYOUT_COMPUTED,
            lambda: [self._layout(request, candidate, style) for candidate in candidates],
        )
        variants = self._stage(
            PipelineState.FINALIZED,
            lambda: [
                self._finalize(label_index, candidate, canvas, layout, color, style)
                for label_index, (candidate, (canvas, layout, color)) in enumerate(zip(candidates, layouts))
            ],
        )

        for variant in variants:
            if variant.layout is not None:
                warnings.extend(f"Variant {variant.label}: {w}" for w in variant.layout.warnings)
        if len(variants) < request.variant_count:
            warnings.append(f"Delivered {len(variants)} of {request.variant_count} requested variants")

        logger.info(f"{self.version.value} finalized {len(variants)} variant(s)")
        return PipelineResult(
            variants=variants,
            pipeline_version=self.version,
            routing=decision,
            warnings=warnings,
        )

    def _build_prompt(self, request: GenerationRequest, style: str) -> str:
        if self.strategy.cinematic_prompt:
            return prompts.build_cinematic_prompt(request, style)
        return prompts.build_minimal_prompt(request, style)

    def _produce_candidates(self, request, prompt, decision, style, warnings: List[str]) -> List[Candidate]:
        def generate(index: int) -> Candidate:
            varied = prompts.with_variation(prompt, index)
            image, backend_id = self.router.execute(decision, varied, request.reference_faces)
            return Candidate(image=image, backend_id=backend_id, index=index, prompt=varied)

        if self.strategy.multi_pass and request.quality_tier != QualityTier.BASIC:
            selected, notes = self.selector.select(
                generate,
                num_to_generate=candidate_count(request),
                num_to_return=request.variant_count,
                min_score=self.min_score,
                score_context={"style": style, "niche": request.niche, "has_face": request.has_face},
            )
            warnings.extend(notes)
            return selected

        candidates, notes = self.selector.generate(generate, request.variant_count)
        warnings.extend(notes)
        for candidate in candidates:
            candidate.score = self.scorer.neutral()
        return candidates

    def _layout(self, request: GenerationRequest, candidate: Candidate, style: str):
        canvas = rendering.fit_canvas(candidate.image)
        if not request.has_text:
            return canvas, None, None

        text = prompts.overlay_text(request)
        font_size = prompts.optimal_font_size(text, style)
        treatment = self.treatments.get(style, DEFAULT_TREATMENT)
        pixels = np.asarray(canvas)

        if self.strategy.composition:
            analysis = self.planner.analyze(
                pixels,
                text_length=len(text),
                font_size=font_size,
                preferred_zone=request.text_position,
                style=style,
                niche=request.niche,
            )
            position = analysis.best_position
            color = analysis.text_color
        else:
            position = request.text_position if request.text_position in POSITION_PRESETS else treatment.default_position
            x, y, _ = resolve_position(position, canvas.width, canvas.height)
            color = self.planner.recommend_text_color(pixels, x, y)

        text_style = TextStyle(
            max_font_size=font_size,
            stroke_width=treatment.stroke_width,
            shadow_dx=treatment.shadow_offset[0],
            shadow_dy=treatment.shadow_offset[1],
        )
        layout = self.fitter.fit(text, position, text_style, canvas.width, canvas.height)
        return canvas, layout, color

    def _finalize(
        self,
        label_index: int,
        candidate: Candidate,
        canvas,
        layout: TextLayout | None,
        color: TextColor | None,
        style: str,
    ) -> Variant:
        treatment = self.treatments.get(style, DEFAULT_TREATMENT)
        data, media_type = rendering.finalize(
            canvas,
            layout,
            color,
            stroke_width=treatment.stroke_width,
            shadow_offset=treatment.shadow_offset,
        )
        return Variant(
            label=chr(ord("A") + label_index),
            image=data,
            score=candidate.score or self.scorer.neutral(),
            backend_id=candidate.backend_id,
            layout=layout,
            media_type=media_type,
        )


class PipelineFallbackChain:
    """Tries each pipeline version in order; the first to finish wins."""

    def __init__(self, runners: Sequence[PipelineRunner]):
        if not runners:
            raise ValueError("At least one pipeline version is required")
        self.runners = list(runners)

    @property
    def versions(self) -> List[PipelineVersion]:
        return [runner.version for runner in self.runners]

    def run(self, request: GenerationRequest) -> PipelineResult:
        errors: Dict[str, str] = {}
        for runner in self.runners:
            try:
                result = runner.run(request)
            except GenerationError as exc:
                errors[runner.version.value] = str(exc)
                logger.error(f"{runner.version.value} failed: {exc}")
                continue

            if errors:
                logger.info(f"{runner.version.value} succeeded after {len(errors)} failed version(s)")
                result.warnings.insert(0, f"Produced by fallback pipeline {runner.version.value}")
            result.fallback_errors = dict(errors)
            return result

        raise AllPipelineVersionsFailed(errors)


def build_default_chain(
    router: BackendRouter | None = None,
    versions: Sequence[PipelineVersion] = tuple(PipelineVersion),
) -> PipelineFallbackChain:
    """Wire the standard v9 -> v8 -> v3 -> v2 chain around shared collaborators."""
    if router is None:
        router = BackendRouter(build_backends())
    planner = CompositionPlanner()
    scorer = QualityScorer(planner)
    fitter = TextLayoutFitter()
    selector = MultiPassSelector(scorer)
    return PipelineFallbackChain(
        [
            PipelineOrchestrator(STRATEGIES[version], router, scorer, planner, fitter, selector)
            for version in versions
        ]
    )
