"""
Backend routing: which synthesis backend runs a request, and what to fall back to.

- Face-heavy styles prefer the face-preserving backend (flux_pulid)
- Cinematic/creative styles prefer Gemini Flash
- A reference face pulls toward flux_pulid unless speed is the priority
- No reference face always routes away from flux_pulid
- priority=speed / priority=cost are absolute overrides
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Mapping, Sequence, Tuple

from thumbforge.api.v1.schemas import Priority
from thumbforge.models.jobs import ReferenceImage, RoutingDecision, SynthesisBackend
from thumbforge.services.backends import ImageBackend
from thumbforge.services.errors import BackendError, BackendUnavailable

logger = logging.getLogger(__name__)

FACE_BACKEND = "flux_pulid"
CREATIVE_BACKEND = "gemini_flash"
RELIABLE_BACKEND = "gemini_exp"

BACKENDS: Mapping[str, SynthesisBackend] = {
    "gemini_flash": SynthesisBackend(
        id="gemini_flash",
        name="Gemini 2.5 Flash",
        latency_seconds=45,
        cost=0.02,
        quality_score=85,
        strengths=frozenset({"fast", "composition", "text-free", "backgrounds"}),
        weaknesses=frozenset({"face-consistency"}),
    ),
    "flux_pulid": SynthesisBackend(
        id="flux_pulid",
        name="Flux PuLID",
        latency_seconds=60,
        cost=0.04,
        quality_score=90,
        strengths=frozenset({"face-preservation", "photorealism", "likeness"}),
        weaknesses=frozenset({"slower", "less-creative-composition"}),
        requires_face=True,
    ),
    "gemini_exp": SynthesisBackend(
        id="gemini_exp",
        name="Gemini 2.0 Exp",
        latency_seconds=50,
        cost=0.015,
        quality_score=80,
        strengths=frozenset({"reliable", "stable"}),
        weaknesses=frozenset({"older-model"}),
    ),
}


@dataclass(frozen=True, slots=True)
class StyleRoute:
    primary: str
    fallback: str
    reason: str


STYLE_BACKEND_MAP: Mapping[str, StyleRoute] = {
    "mrbeast": StyleRoute("flux_pulid", "gemini_flash", "Face prominence requires likeness preservation"),
    "hormozi": StyleRoute("flux_pulid", "gemini_flash", "Authority requires accurate face rendering"),
    "gadzhi": StyleRoute("flux_pulid", "gemini_flash", "Luxury style needs photorealistic face"),
    "magnates": StyleRoute("gemini_flash", "flux_pulid", "Documentary style prioritizes composition"),
    "documentary": StyleRoute("gemini_flash", "flux_pulid", "Story-driven visuals over face accuracy"),
    "gaming": StyleRoute("gemini_flash", "flux_pulid", "Creative freedom for neon/effects"),
    "lifestyle": StyleRoute("flux_pulid", "gemini_flash", "Warm, personal style needs face accuracy"),
    "finance": StyleRoute("flux_pulid", "gemini_flash", "Professional trust requires accurate face"),
    "business": StyleRoute("flux_pulid", "gemini_flash", "Authority needs face consistency"),
    "default": StyleRoute("gemini_flash", "flux_pulid", "General purpose, fast generation"),
}

NICHE_HINTS: Mapping[str, str] = {
    "personal-brand": "flux_pulid",
    "coaching": "flux_pulid",
    "fitness": "flux_pulid",
    "beauty": "flux_pulid",
    "real-estate": "flux_pulid",
    "gaming": "gemini_flash",
    "tech": "gemini_flash",
    "animation": "gemini_flash",
    "music": "gemini_flash",
    "documentary": "gemini_flash",
    "true-crime": "gemini_flash",
    "history": "gemini_flash",
}


def get_backend_stats(catalog: Mapping[str, SynthesisBackend] = BACKENDS) -> List[dict]:
    return [
        {
            "id": backend.id,
            "name": backend.name,
            "cost": backend.cost,
            "latency_seconds": backend.latency_seconds,
            "quality_score": backend.quality_score,
            "strengths": sorted(backend.strengths),
            "weaknesses": sorted(backend.weaknesses),
            "requires_face": backend.requires_face,
        }
        for backend in catalog.values()
    ]


class BackendRouter:
    """
    Picks a backend per request and executes with one fallback.

    The catalog and lookup tables are read-only and injected; `clients` maps
    backend ids to live ImageBackend implementations and is only needed for
    `execute`.
    """

    def __init__(
        self,
        clients: Mapping[str, ImageBackend] | None = None,
        catalog: Mapping[str, SynthesisBackend] = BACKENDS,
        style_map: Mapping[str, StyleRoute] = STYLE_BACKEND_MAP,
        niche_hints: Mapping[str, str] = NICHE_HINTS,
        creative_backend: str = CREATIVE_BACKEND,
    ):
        self.clients = dict(clients or {})
        self.catalog = catalog
        self.style_map = style_map
        self.niche_hints = niche_hints
        self.creative_backend = creative_backend

    def _requires_face(self, backend_id: str) -> bool:
        backend = self.catalog.get(backend_id)
        return bool(backend and backend.requires_face)

    def _usable(self, has_face: bool) -> List[SynthesisBackend]:
        return [b for b in self.catalog.values() if has_face or not b.requires_face]

    def select(
        self,
        style: str | None = None,
        niche: str | None = None,
        has_face: bool = False,
        priority: Priority | str = Priority.QUALITY,
    ) -> RoutingDecision:
        """
        Choose a backend for a request.

        Strategy:
        - Start from the style table (unknown styles use "default")
        - Face supplied and priority != speed -> face-preserving backend;
          no face -> never the face-preserving backend
        - Niche hint applies only if it agrees with the face rule
        - priority=speed -> fastest backend; priority=cost -> cheapest
        - Fallback is the style's fallback unless it equals the choice
          (then the reliable backend); a face-requiring fallback without a
          face becomes the creative backend
        """
        priority = Priority(priority)
        style_key = (style or "").lower()
        route = self.style_map.get(style_key) or self.style_map["default"]
        selected = route.primary
        reason = route.reason

        if has_face:
            if priority != Priority.SPEED:
                selected = FACE_BACKEND
                reason = "Face image provided - using face-preserving backend for likeness"
        elif self._requires_face(selected):
            selected = self.creative_backend
            reason = "No face image - using creative backend for composition"

        hint = self.niche_hints.get((niche or "").lower())
        if hint:
            if has_face and self._requires_face(hint):
                selected = hint
                reason = f'Niche "{niche}" benefits from face-focused backend'
            elif not has_face and not self._requires_face(hint):
                selected = hint
                reason = f'Niche "{niche}" benefits from creative composition'

        usable = self._usable(has_face)
        if priority == Priority.SPEED:
            selected = min(usable, key=lambda b: b.latency_seconds).id
            reason = "Speed priority - using fastest backend"
        elif priority == Priority.COST:
            selected = min(usable, key=lambda b: b.cost).id
            reason = "Cost priority - using most economical backend"

        fallback = route.fallback if route.fallback != selected else RELIABLE_BACKEND
        if not has_face and self._requires_face(fallback):
            fallback = self.creative_backend if selected != self.creative_backend else RELIABLE_BACKEND

        logger.info("Selected %s (fallback %s): %s", selected, fallback, reason)
        return RoutingDecision(backend_id=selected, fallback_id=fallback, reason=reason)

    def recommend_backend(self, style: str | None, has_face: bool = False) -> RoutingDecision:
        return self.select(style=style, has_face=has_face)

    def _client(self, backend_id: str) -> ImageBackend:
        client = self.clients.get(backend_id)
        if client is None:
            raise BackendError(f"No client configured for {backend_id}", code="NOT_CONFIGURED", backend_id=backend_id)
        return client

    def _synthesize(self, backend_id: str, prompt: str, references: Sequence[ReferenceImage]) -> Tuple[bytes, str]:
        try:
            return self._client(backend_id).synthesize(prompt, references), backend_id
        except BackendUnavailable as exc:
            if backend_id == self.creative_backend:
                raise
            logger.warning("%s; substituting %s", exc, self.creative_backend)
            return self._client(self.creative_backend).synthesize(prompt, references), self.creative_backend

    def execute(
        self,
        decision: RoutingDecision,
        prompt: str,
        reference_images: Sequence[ReferenceImage] = (),
    ) -> Tuple[bytes, str]:
        """
        Generate one image with the decided backend, then its fallback.

        Returns (image bytes, id of the backend that produced them). Raises
        BackendError when both the primary and the fallback fail, whatever
        the clients raised.
        """
        try:
            return self._synthesize(decision.backend_id, prompt, reference_images)
        except Exception as primary_error:  # noqa: BLE001
            logger.warning(f"{decision.backend_id} failed: {primary_error}. Trying fallback {decision.fallback_id}")
            try:
                return self._synthesize(decision.fallback_id, prompt, reference_images)
            except Exception as fallback_error:  # noqa: BLE001
                raise BackendError(
                    f"{decision.backend_id} failed ({primary_error}); "
                    f"fallback {decision.fallback_id} failed ({fallback_error})",
                    code=getattr(fallback_error, "code", "SERVER_ERROR"),
                    backend_id=decision.fallback_id,
                ) from fallback_error


def recommend_backend(style: str | None, has_face: bool = False) -> RoutingDecision:
    """Routing shortcut with default priority, for the backends endpoint."""
    return BackendRouter().recommend_backend(style, has_face)
