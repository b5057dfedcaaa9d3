"""AI quiz strategy: LLM picks from rule-selected candidates."""

import json
import logging
from typing import Any, Optional

import openai
from langfuse import observe
from langfuse.openai import OpenAI

from bookrec.config import get_settings
from bookrec.constants import LLM_MODEL, QUIZ_CANDIDATE_POOL
from bookrec.models.schemas import CandidateBook, ScoredRecommendation, UserSignals
from bookrec.services.candidates import select_candidates
from bookrec.services.catalog_store import CatalogStore
from bookrec.services.scoring import clamp_score, rank, score_candidates

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a knowledgeable librarian and book recommendation expert. Given a reader's quiz answers and a list of candidate books from our catalog, select the books that best fit the reader.

For each recommendation, provide:
1. The book ID from the candidate list (never invent IDs)
2. A confidence score (0-100) indicating how well it matches the reader
3. A one-sentence reason addressed to the reader

Return JSON: {"recommendations": [{"book_id": "<id>", "confidence": <0-100>, "reason": "<why>"}]}"""


def quiz_genres(answers: dict[str, Any]) -> frozenset[str]:
    genres = answers.get("genres") or []
    if isinstance(genres, str):
        genres = [genres]
    return frozenset(str(g) for g in genres if g)


def quiz_signals(answers: dict[str, Any], signals: UserSignals) -> UserSignals:
    """Quiz genres replace stored favorites; ownership exclusions are kept."""
    return UserSignals(
        favorite_genres=quiz_genres(answers),
        purchased_book_ids=signals.purchased_book_ids,
        highly_rated_book_ids=signals.highly_rated_book_ids,
    )


class QuizRanker:
    """Ranks quiz candidates with an LLM (traced through Langfuse)."""

    def __init__(self, client: OpenAI, model: str = LLM_MODEL):
        self.client = client
        self.model = model

    def _build_prompt(self, answers: dict[str, Any], candidates: list[CandidateBook], limit: int) -> str:
        lines = ["Quiz answers:"]
        for key, value in answers.items():
            if value:
                lines.append(f"  - {key}: {value}")
        lines.append("")
        lines.append("Candidate books:")
        for i, book in enumerate(candidates, 1):
            lines.append(f"{i}. [{book.id}] {book.title}")
            if book.genres:
                lines.append(f"   Genres: {', '.join(book.genres)}")
            lines.append(f"   Rating: {book.average_rating:.1f} ({book.ratings_count} ratings)")
        lines.append("")
        lines.append(f"Select up to {limit} books.")
        return "\n".join(lines)

    @observe()
    def rank(
        self,
        answers: dict[str, Any],
        candidates: list[CandidateBook],
        limit: int,
    ) -> list[ScoredRecommendation]:
        """Ask the LLM to pick and explain up to `limit` candidates.

        Raises:
            ValueError: If the response cannot be parsed
            openai.OpenAIError: If the API call fails
        """
        if not candidates:
            return []

        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": self._build_prompt(answers, candidates, limit)},
            ],
            temperature=0.7,
            response_format={"type": "json_object"},
        )

        try:
            result = json.loads(response.choices[0].message.content)
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Failed to parse LLM response: {e}")

        if isinstance(result, dict):
            picks = result.get("recommendations", [])
        elif isinstance(result, list):
            picks = result
        else:
            raise ValueError(f"Unexpected LLM response type: {type(result).__name__}")
        if not isinstance(picks, list):
            raise ValueError(f"Invalid recommendations list: {picks!r}")

        by_id = {book.id: book for book in candidates}

        recommendations = []
        seen = set()
        for pick in picks:
            if not isinstance(pick, dict) or "book_id" not in pick:
                raise ValueError(f"Invalid recommendation structure: {pick}")
            book = by_id.get(str(pick["book_id"]))
            if book is None or book.id in seen:
                continue
            seen.add(book.id)
            try:
                confidence = float(pick.get("confidence", 0))
            except (TypeError, ValueError):
                confidence = 0.0
            recommendations.append(
                ScoredRecommendation(
                    book=book,
                    score=clamp_score(confidence / 100),
                    reason=str(pick.get("reason") or "Picked for your quiz answers"),
                )
            )
        return rank(recommendations, limit)


def get_quiz_ranker() -> Optional[QuizRanker]:
    """LLM ranker when an OpenAI key is configured, else None."""
    settings = get_settings()
    if not settings.openai_api_key:
        return None
    return QuizRanker(OpenAI(api_key=settings.openai_api_key))


@observe()
def quiz_recommendations(
    store: CatalogStore,
    signals: UserSignals,
    answers: dict[str, Any],
    limit: int,
    ranker: Optional[QuizRanker] = None,
) -> list[ScoredRecommendation]:
    """Recommendations driven by quiz answers.

    The LLM ranker is tried first when available; any failure falls back to
    the rule-based scorer over the same candidates.
    """
    signals = quiz_signals(answers, signals)
    candidates = select_candidates(store, signals, max(limit, QUIZ_CANDIDATE_POOL))

    if ranker is not None:
        try:
            picks = ranker.rank(answers, candidates, limit)
            if picks:
                return picks
            logger.warning("LLM returned no usable quiz picks; using rule-based scoring")
        except (ValueError, openai.OpenAIError) as e:
            logger.warning("Quiz LLM ranking failed, using rule-based scoring: %s", e)

    return score_candidates(candidates, signals, limit)
