"""
Multi-pass candidate selection: generate several images, keep the best.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Mapping

from thumbforge.models.jobs import Candidate
from thumbforge.services.errors import AllCandidatesFailed, CandidateFailed
from thumbforge.services.scoring import QualityScorer

logger = logging.getLogger(__name__)

DEFAULT_MIN_SCORE = 50.0


class MultiPassSelector:
    """
    Drives N sequential generations and returns the top K by quality score.

    Generation is strictly one call at a time because every backend is rate
    limited. Scoring of images that already exist may run in a small pool.
    """

    def __init__(self, scorer: QualityScorer, scoring_workers: int = 1):
        self.scorer = scorer
        self.scoring_workers = max(1, scoring_workers)

    def generate(self, generate_fn: Callable[[int], Candidate], count: int) -> tuple[List[Candidate], List[str]]:
        """
        Call `generate_fn(index)` for each index in turn.

        Returns the candidates that succeeded plus one warning per failure.
        Raises AllCandidatesFailed if none succeeded.
        """
        candidates: List[Candidate] = []
        warnings: List[str] = []
        for index in range(count):
            logger.info("Generating candidate %d/%d...", index + 1, count)
            try:
                candidate = generate_fn(index)
            except Exception as exc:  # noqa: BLE001
                failure = CandidateFailed(index, exc)
                logger.warning("%s", failure)
                warnings.append(str(failure))
                continue
            candidate.index = index
            candidates.append(candidate)

        if not candidates:
            raise AllCandidatesFailed(f"All {count} candidate generations failed")
        return candidates, warnings

    def score_all(self, candidates: List[Candidate], context: Mapping[str, object]) -> None:
        def _score(candidate: Candidate) -> None:
            candidate.score = self.scorer.score(candidate.image, **context)

        if self.scoring_workers == 1 or len(candidates) == 1:
            for candidate in candidates:
                _score(candidate)
            return
        with ThreadPoolExecutor(max_workers=min(self.scoring_workers, len(candidates))) as pool:
            list(pool.map(_score, candidates))

    def select(
        self,
        generate_fn: Callable[[int], Candidate],
        num_to_generate: int = 4,
        num_to_return: int = 2,
        min_score: float = DEFAULT_MIN_SCORE,
        score_context: Mapping[str, object] | None = None,
    ) -> tuple[List[Candidate], List[str]]:
        """
        Generate, score and pick the best candidates.

        Strategy:
        - Generate sequentially; a failed generation is logged and skipped
        - Sort survivors by final score, highest first
        - Keep those scoring at least `min_score`, unless that leaves fewer
          than `num_to_return`, in which case the full sorted list is used
        - Return at most `num_to_return`

        Returns (selected candidates, warnings).
        """
        candidates, warnings = self.generate(generate_fn, num_to_generate)
        self.score_all(candidates, score_context or {})

        ranked = sorted(candidates, key=lambda c: c.score.final_score, reverse=True)
        acceptable = [c for c in ranked if c.score.final_score >= min_score]
        selected = (acceptable if len(acceptable) >= num_to_return else ranked)[:num_to_return]

        logger.info(f"Selected {len(selected)} of {len(candidates)} candidates:")
        for position, candidate in enumerate(selected, start=1):
            logger.info(
                "  %d. candidate %d score %.1f (%s)",
                position,
                candidate.index,
                candidate.score.final_score,
                candidate.score.recommendation,
            )
        return selected, warnings
