"""
Tests for backend routing and execution with fallback.
"""

import itertools
import logging

import pytest

from thumbforge.api.v1.schemas import Priority
from thumbforge.models.jobs import ReferenceImage, RoutingDecision
from thumbforge.services.errors import BackendError, BackendUnavailable
from thumbforge.services.routing import (
    BACKENDS,
    NICHE_HINTS,
    STYLE_BACKEND_MAP,
    BackendRouter,
    get_backend_stats,
    recommend_backend,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

FACE = (ReferenceImage(data=b"face"),)


class FakeBackend:
    def __init__(self, backend_id, error=None):
        self.id = backend_id
        self.error = error
        self.calls = 0

    def synthesize(self, prompt, reference_images):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return f"{self.id}:{prompt}".encode()


def test_no_face_never_routes_to_face_backend():
    router = BackendRouter()
    styles = list(STYLE_BACKEND_MAP) + ["unknown", None]
    niches = list(NICHE_HINTS) + ["", "unknown"]
    for style, niche, priority in itertools.product(styles, niches, list(Priority)):
        decision = router.select(style=style, niche=niche, has_face=False, priority=priority)
        assert decision.backend_id != "flux_pulid", (style, niche, priority)
        assert decision.fallback_id != "flux_pulid", (style, niche, priority)
        assert decision.fallback_id != decision.backend_id


def test_face_with_quality_priority_uses_face_backend():
    decision = BackendRouter().select(style="mrbeast", niche="", has_face=True)
    assert decision.backend_id == "flux_pulid"
    assert decision.fallback_id == "gemini_flash"


def test_hormozi_tech_without_face():
    decision = BackendRouter().select(style="hormozi", niche="tech", has_face=False)
    assert decision.backend_id == "gemini_flash"
    assert decision.fallback_id == "gemini_exp"
    assert "tech" in decision.reason


def test_speed_priority_picks_fastest_usable_backend():
    with_face = BackendRouter().select(style="mrbeast", has_face=True, priority=Priority.SPEED)
    assert with_face.backend_id == "gemini_flash"
    assert with_face.reason.startswith("Speed priority")


def test_cost_priority_picks_cheapest_usable_backend():
    decision = BackendRouter().select(style="mrbeast", has_face=False, priority="cost")
    assert decision.backend_id == "gemini_exp"
    assert decision.fallback_id != "flux_pulid"


def test_execute_falls_back_when_primary_fails():
    primary = FakeBackend("flux_pulid", BackendError("boom", code="SERVER_ERROR"))
    fallback = FakeBackend("gemini_flash")
    router = BackendRouter({"flux_pulid": primary, "gemini_flash": fallback})

    image, backend_id = router.execute(RoutingDecision("flux_pulid", "gemini_flash", "test"), "a prompt", FACE)

    assert backend_id == "gemini_flash"
    assert image == b"gemini_flash:a prompt"
    assert primary.calls == 1 and fallback.calls == 1


def test_execute_falls_back_on_unexpected_client_error():
    primary = FakeBackend("gemini_flash", ValueError("malformed provider response"))
    fallback = FakeBackend("gemini_exp")
    router = BackendRouter({"gemini_flash": primary, "gemini_exp": fallback})
    decision = router.select(style="gaming")

    image, backend_id = router.execute(decision, "p")

    assert (decision.backend_id, decision.fallback_id) == ("gemini_flash", "gemini_exp")
    assert backend_id == "gemini_exp"
    assert image == b"gemini_exp:p"
    assert fallback.calls == 1


def test_execute_wraps_unexpected_errors_when_both_fail():
    router = BackendRouter(
        {
            "gemini_flash": FakeBackend("gemini_flash", KeyError("urls")),
            "gemini_exp": FakeBackend("gemini_exp", OSError("disk full")),
        }
    )

    with pytest.raises(BackendError) as excinfo:
        router.execute(RoutingDecision("gemini_flash", "gemini_exp", "test"), "prompt")

    assert "disk full" in str(excinfo.value)
    assert excinfo.value.code == "SERVER_ERROR"


def test_execute_raises_when_both_fail():
    router = BackendRouter(
        {
            "gemini_flash": FakeBackend("gemini_flash", BackendError("primary down", code="TIMEOUT")),
            "gemini_exp": FakeBackend("gemini_exp", BackendError("fallback down", code="SERVER_ERROR")),
        }
    )

    with pytest.raises(BackendError) as excinfo:
        router.execute(RoutingDecision("gemini_flash", "gemini_exp", "test"), "prompt")

    message = str(excinfo.value)
    assert "primary down" in message and "fallback down" in message
    assert excinfo.value.backend_id == "gemini_exp"


def test_unavailable_face_backend_is_substituted():
    flux = FakeBackend("flux_pulid", BackendUnavailable("needs a face", backend_id="flux_pulid"))
    creative = FakeBackend("gemini_flash")
    router = BackendRouter({"flux_pulid": flux, "gemini_flash": creative, "gemini_exp": FakeBackend("gemini_exp")})

    _, backend_id = router.execute(RoutingDecision("flux_pulid", "gemini_exp", "test"), "prompt")

    assert backend_id == "gemini_flash"


def test_missing_client_is_a_backend_error():
    router = BackendRouter({"gemini_exp": FakeBackend("gemini_exp")})
    _, backend_id = router.execute(RoutingDecision("gemini_flash", "gemini_exp", "test"), "prompt")
    assert backend_id == "gemini_exp"


def test_backend_stats_and_recommendation():
    stats = get_backend_stats()
    assert {s["id"] for s in stats} == set(BACKENDS)
    flux = next(s for s in stats if s["id"] == "flux_pulid")
    assert flux["requires_face"] is True
    assert recommend_backend("documentary", has_face=False).backend_id == "gemini_flash"
