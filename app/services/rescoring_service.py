"""
Cadence — Asynchronous queue rescoring.

After a refill inserts entries scored with the local Jaccard formula, the
highest-scoring new entries are handed to an external scorer (Gemini) and
their stored scores overwritten.  Runs on the ``BackgroundTaskRunner``;
every failure is logged and skipped, never raised to a request.
"""

from __future__ import annotations

import asyncio
import math
import uuid
from typing import Any, Protocol

import structlog

from app.config import Settings, get_settings
from app.services.compatibility_service import round_half_up
from app.store import ProfileStore

logger = structlog.get_logger("cadence.rescoring_service")


class ExternalScorer(Protocol):
    async def score_compatibility(self, profile_a: Any, profile_b: Any) -> float | None: ...


class RescoringService:
    """Best-effort, rate-limited rescoring of queued candidates."""

    def __init__(self, external: ExternalScorer, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.external = external
        self.timeout: float = settings.RESCORE_TIMEOUT_SECONDS
        self.delay: float = settings.RESCORE_DELAY_SECONDS

    async def rescore(
        self,
        store: ProfileStore,
        owner_id: uuid.UUID,
        candidate_ids: list[uuid.UUID],
    ) -> dict:
        """Rescore ``candidate_ids`` in ``owner_id``'s queue.

        Returns
        -------
        dict
            ``{"updated", "skipped", "failed"}`` counts.  Skipped covers
            missing profiles, consumed entries and unparseable answers.
        """
        log = logger.bind(owner_id=str(owner_id))
        counts = {"updated": 0, "skipped": 0, "failed": 0}

        owner_profile = await store.get_taste_profile(owner_id)
        if owner_profile is None:
            log.warning("rescore_owner_profile_missing")
            counts["skipped"] = len(candidate_ids)
            return counts

        profiles = await store.get_taste_profiles(candidate_ids)
        log.info("rescore_start", candidates=len(candidate_ids))

        for index, candidate_id in enumerate(candidate_ids):
            if index > 0 and self.delay > 0:
                await asyncio.sleep(self.delay)

            profile = profiles.get(candidate_id)
            if profile is None:
                counts["skipped"] += 1
                continue

            try:
                score = await asyncio.wait_for(
                    self.external.score_compatibility(owner_profile, profile),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                log.warning("rescore_timeout", candidate_id=str(candidate_id))
                counts["failed"] += 1
                continue
            except Exception as exc:
                log.warning(
                    "rescore_external_failed",
                    candidate_id=str(candidate_id),
                    error=str(exc),
                )
                counts["failed"] += 1
                continue

            if score is None or not math.isfinite(score):
                log.info("rescore_no_score", candidate_id=str(candidate_id), score=score)
                counts["skipped"] += 1
                continue

            score = float(round_half_up(max(0.0, min(100.0, float(score)))))
            if await store.update_queue_score(owner_id, candidate_id, score):
                await store.commit()
                counts["updated"] += 1
                log.debug("rescore_updated", candidate_id=str(candidate_id), score=score)
            else:
                # Entry consumed by a swipe while we were waiting.
                counts["skipped"] += 1

        log.info("rescore_complete", **counts)
        return counts
