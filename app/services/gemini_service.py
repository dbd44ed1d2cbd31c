"""
Cadence — GeminiService: external higher-fidelity compatibility scorer.

Asks a Gemini model to compare two taste profiles using the same weighting
as the local scorer (genres 30%, artists 40%, songs 30%) and return a
single 0-100 percentage.  Used only by the background rescorer; request
handlers never wait on it.

Model fallback chain:
    GEMINI_MODEL_PRIMARY -> GEMINI_MODEL_FALLBACK

Each model call is retried with exponential backoff on rate-limit and
server errors.  Response parsing tries, in order: strict JSON, a fenced
code block, a bare number, and finally ``json_repair``.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

import google.generativeai as genai
import structlog
from json_repair import repair_json
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.config import Settings, get_settings
from app.errors import UnavailableError

logger = structlog.get_logger("cadence.gemini_service")

_MAX_ATTEMPTS = 3

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")

_PROMPT_TEMPLATE = """You are an assistant that calculates music compatibility between two people based on their music taste.

Compare the overlap between the two people's top genres, artists and songs.
Weights: genres = 30%, artists = 40%, songs = 30%.

Person A:
Genres: {a_genres}
Artists: {a_artists}
Songs: {a_songs}

Person B:
Genres: {b_genres}
Artists: {b_artists}
Songs: {b_songs}

Respond with JSON only, in the form {{"compatibility": N}} where N is a
number from 0 to 100. Do not include any explanation."""


def _is_retryable_api_error(exc: BaseException) -> bool:
    """Return True for rate-limit (429) and transient server (5xx) errors.

    The google-generativeai SDK wraps these in several exception types, so
    both the type name and the message are inspected.
    """
    exc_str = str(exc).lower()
    exc_type = type(exc).__name__.lower()

    if "429" in exc_str or "resource_exhausted" in exc_str:
        return True
    if "500" in exc_str or "503" in exc_str or "internal" in exc_str:
        return True
    if "resourceexhausted" in exc_type or "serviceunavailable" in exc_type:
        return True

    return False


def _format_tokens(tokens: Any) -> str:
    values = list(tokens or [])
    return ", ".join(values) if values else "(none)"


class GeminiService:
    """External compatibility scorer backed by the Gemini API."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()

        genai.configure(api_key=settings.GEMINI_API_KEY)

        self._model_chain: list[str] = [
            name
            for name in (settings.GEMINI_MODEL_PRIMARY, settings.GEMINI_MODEL_FALLBACK)
            if name
        ]
        self._generation_config = genai.GenerationConfig(
            max_output_tokens=64,
            temperature=0.0,
            response_mime_type="application/json",
        )

        logger.info("gemini_service_initialised", model_chain=self._model_chain)

    # ── Public API ────────────────────────────────────────────────────────

    async def score_compatibility(self, profile_a: Any, profile_b: Any) -> float | None:
        """Return the model's 0-100 compatibility estimate for two profiles.

        Parameters
        ----------
        profile_a, profile_b:
            Taste profiles exposing ``genres``, ``artists`` and ``songs``.

        Returns
        -------
        float | None
            The parsed percentage, or ``None`` if the model answered but the
            answer could not be interpreted as a number.

        Raises
        ------
        UnavailableError
            If every model in the chain failed at the transport level.
        """
        prompt = self._build_prompt(profile_a, profile_b)
        last_exception: Exception | None = None

        for model_name in self._model_chain:
            try:
                text = await self._call_gemini_with_retry(model_name, prompt)
            except Exception as exc:
                last_exception = exc
                logger.warning(
                    "model_fallback",
                    failed_model=model_name,
                    error=str(exc),
                )
                continue

            score = self._parse_score(text)
            if score is None:
                logger.warning(
                    "gemini_unparseable_score",
                    model=model_name,
                    preview=text[:80],
                )
            return score

        raise UnavailableError(
            "All Gemini models failed",
            last_error=last_exception,
        )

    # ── Internals ─────────────────────────────────────────────────────────

    def _build_prompt(self, profile_a: Any, profile_b: Any) -> str:
        return _PROMPT_TEMPLATE.format(
            a_genres=_format_tokens(profile_a.genres),
            a_artists=_format_tokens(profile_a.artists),
            a_songs=_format_tokens(profile_a.songs),
            b_genres=_format_tokens(profile_b.genres),
            b_artists=_format_tokens(profile_b.artists),
            b_songs=_format_tokens(profile_b.songs),
        )

    async def _call_gemini_with_retry(self, model_name: str, prompt: str) -> str:
        """Call one model, retrying transient errors with exponential backoff."""
        model = genai.GenerativeModel(model_name)

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable_api_error),
                stop=stop_after_attempt(_MAX_ATTEMPTS),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                reraise=True,
            ):
                with attempt:
                    logger.debug(
                        "gemini_call_attempt",
                        model=model_name,
                        attempt_number=attempt.retry_state.attempt_number,
                    )
                    response = await model.generate_content_async(
                        prompt,
                        generation_config=self._generation_config,
                    )

                    if not response.candidates:
                        raise ValueError(
                            f"Gemini returned no candidates for model {model_name}"
                        )

                    text = response.text
                    if not text or not text.strip():
                        raise ValueError(f"Gemini returned empty text for model {model_name}")

                    return text

        except RetryError as retry_err:
            logger.error(
                "gemini_retry_exhausted",
                model=model_name,
                attempts=_MAX_ATTEMPTS,
                last_error=str(retry_err.last_attempt.exception()),
            )
            raise retry_err.last_attempt.exception() from retry_err

    def _parse_score(self, text: str) -> float | None:
        """Extract the compatibility number from a model response.

        Accepts ``{"compatibility": 78}``, a fenced JSON block, a bare
        ``78`` / ``78%``, or JSON that ``json_repair`` can salvage.
        """
        if not text or not text.strip():
            return None
        cleaned = text.strip()

        candidates = [cleaned]
        fence = _CODE_FENCE_RE.search(cleaned)
        if fence:
            candidates.append(fence.group(1).strip())

        for candidate in candidates:
            try:
                value = self._score_from_json(json.loads(candidate))
            except (json.JSONDecodeError, TypeError, ValueError):
                continue
            if value is not None:
                return value

        if "{" not in cleaned:
            number = _NUMBER_RE.search(cleaned)
            if number:
                return float(number.group(0))

        try:
            value = self._score_from_json(json.loads(repair_json(cleaned)))
        except Exception as exc:
            logger.debug("jsonrepair_failed", error=str(exc))
            return None
        if value is not None:
            logger.info("json_parsed_via_jsonrepair", original_preview=cleaned[:80])
        return value

    @staticmethod
    def _score_from_json(parsed: Any) -> float | None:
        """Pull a finite number out of parsed JSON; NaN and infinities are no answer."""
        raw: Any = parsed
        if isinstance(parsed, dict):
            raw = next(
                (parsed[key] for key in ("compatibility", "score", "percentage") if key in parsed),
                None,
            )
        if raw is None or isinstance(raw, bool):
            return None
        if isinstance(raw, str):
            raw = raw.strip().rstrip("%")
        elif not isinstance(raw, (int, float)):
            return None

        value = float(raw)
        return value if math.isfinite(value) else None
