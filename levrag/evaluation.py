"""Lexical-overlap answer scoring with running metrics and daily trends.

Scores are percentages in [0, 100] rounded to two decimals:

- faithfulness: share of answer words that also occur in the expected answer
- relevance: share of expected-answer words that also occur in the answer
- coherence: ``0.6 * sentence_score + 0.4 * length_score`` where
  ``sentence_score = min(sentences / 5, 1) * 100`` and
  ``length_score = min(avg_sentence_words / 15, 1) * 100``
- ragas score: mean of the three
"""

from __future__ import annotations

import math
import re
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from .config import config
from .conversation import Clock, new_id, utc_now
from .errors import GroundTruthPairNotFound, InvalidRequest, MalformedImportPayload
from .models import EvaluationResult, GroundTruthPair, ScoreTrend

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from .answer import AnswerComposer

logger = config.get_logger(__name__)

SENTENCE_DELIMITERS = re.compile(r"[.!?]+")
IDEAL_SENTENCE_WORDS = 15
TARGET_SENTENCES = 5
SENTENCE_WEIGHT = 0.6
LENGTH_WEIGHT = 0.4
DISTRIBUTION_BUCKETS = (
    ("0-20", 20),
    ("20-40", 40),
    ("40-60", 60),
    ("60-80", 80),
    ("80-100", math.inf),
)
PERCENTILES = (("p50", 0.5), ("p75", 0.75), ("p90", 0.9), ("p95", 0.95))
QUALITY_LEVELS = ((80, "Excellent"), (60, "Good"), (40, "Fair"))
RECOMMENDATION_THRESHOLD = 60


def tokenize(text: str) -> list[str]:
    return text.lower().split()


def _score(value: float) -> float:
    return round(value, 2)


def faithfulness(actual_answer: str, expected_answer: str) -> float:
    """Percentage of answer words supported by the expected answer."""
    actual_words = tokenize(actual_answer)
    expected_words = set(tokenize(expected_answer))
    if not actual_words or not expected_words:
        return 0.0
    supported = sum(1 for word in actual_words if word in expected_words)
    return _score(supported / len(actual_words) * 100)


def relevance(actual_answer: str, expected_answer: str) -> float:
    """Percentage of expected-answer words covered by the answer."""
    expected_words = tokenize(expected_answer)
    if not expected_words:
        return 0.0
    actual_words = set(tokenize(actual_answer))
    covered = sum(1 for word in expected_words if word in actual_words)
    return _score(covered / len(expected_words) * 100)


def coherence(answer: str) -> float:
    """Structure score from sentence count and average sentence length."""
    sentences = [s for s in SENTENCE_DELIMITERS.split(answer) if s.strip()]
    if not sentences:
        return 0.0
    avg_length = len(answer.split()) / len(sentences)
    sentence_score = min(len(sentences) / TARGET_SENTENCES, 1) * 100
    length_score = min(avg_length / IDEAL_SENTENCE_WORDS, 1) * 100
    return _score(sentence_score * SENTENCE_WEIGHT + length_score * LENGTH_WEIGHT)


@dataclass(frozen=True)
class ScoreBreakdown:
    faithfulness: float
    relevance: float
    coherence: float
    ragas_score: float


class AnswerScorer(Protocol):
    """Scores an answer against an expected answer."""

    def score(self, actual_answer: str, expected_answer: str) -> ScoreBreakdown: ...


class LexicalOverlapScorer:
    """Word-overlap heuristic scorer."""

    def score(self, actual_answer: str, expected_answer: str) -> ScoreBreakdown:
        f = faithfulness(actual_answer, expected_answer)
        r = relevance(actual_answer, expected_answer)
        c = coherence(actual_answer)
        return ScoreBreakdown(
            faithfulness=f,
            relevance=r,
            coherence=c,
            ragas_score=_score((f + r + c) / 3),
        )


class _RunningMetrics:
    """Incremental averages over every recorded result."""

    def __init__(self, recent_size: int) -> None:
        self.total = 0
        self.avg_ragas = 0.0
        self.avg_faithfulness = 0.0
        self.avg_relevance = 0.0
        self.avg_coherence = 0.0
        self.recent: deque[EvaluationResult] = deque(maxlen=recent_size)

    def add(self, result: EvaluationResult) -> None:
        n = self.total
        self.avg_ragas = (self.avg_ragas * n + result.ragas_score) / (n + 1)
        self.avg_faithfulness = (self.avg_faithfulness * n + result.faithfulness) / (n + 1)
        self.avg_relevance = (self.avg_relevance * n + result.relevance) / (n + 1)
        self.avg_coherence = (self.avg_coherence * n + result.coherence) / (n + 1)
        self.total = n + 1
        self.recent.append(result)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalEvaluations": self.total,
            "avgRagasScore": _score(self.avg_ragas),
            "avgFaithfulness": _score(self.avg_faithfulness),
            "avgRelevance": _score(self.avg_relevance),
            "avgCoherence": _score(self.avg_coherence),
            "results": [result.to_dict() for result in self.recent],
        }


class EvaluationEngine:
    """Ground-truth pairs, their evaluation results, and aggregates over them."""

    def __init__(
        self,
        scorer: AnswerScorer | None = None,
        clock: Clock | None = None,
        recent_size: int | None = None,
    ) -> None:
        self.scorer = scorer or LexicalOverlapScorer()
        self.clock = clock or utc_now
        self.recent_size = (
            config.EVALUATION_RECENT_RESULTS if recent_size is None else recent_size
        )
        self._pairs: dict[str, GroundTruthPair] = {}
        self._results: list[EvaluationResult] = []
        self._metrics = _RunningMetrics(self.recent_size)
        self._trends: dict[str, ScoreTrend] = {}

    # Ground-truth pairs

    def add_pair(self, question: str, expected_answer: str) -> GroundTruthPair:
        """Store a new ground-truth pair.

        Raises:
            InvalidRequest: If either text is blank.
        """
        if not question.strip() or not expected_answer.strip():
            msg = "question and expectedAnswer are required"
            raise InvalidRequest(msg)
        pair = GroundTruthPair(
            id=new_id("pair"),
            question=question,
            expected_answer=expected_answer,
            created_at=self.clock(),
        )
        self._pairs[pair.id] = pair
        logger.info("Added ground truth pair: %s", pair.id)
        return pair

    def get_pair(self, pair_id: str) -> GroundTruthPair:
        """Look up a pair.

        Raises:
            GroundTruthPairNotFound: If no pair has this id.
        """
        pair = self._pairs.get(pair_id)
        if pair is None:
            msg = f"Ground truth pair not found: {pair_id}"
            raise GroundTruthPairNotFound(msg)
        return pair

    def list_pairs(self) -> list[GroundTruthPair]:
        return list(self._pairs.values())

    def delete_pair(self, pair_id: str) -> bool:
        """Delete a pair together with its results; aggregates are rebuilt."""
        if self._pairs.pop(pair_id, None) is None:
            return False
        self._results = [r for r in self._results if r.pair_id != pair_id]
        self._rebuild_metrics()
        logger.info("Deleted ground truth pair: %s", pair_id)
        return True

    def import_pairs(self, payload: object) -> list[GroundTruthPair]:
        """Bulk-add pairs from ``{"pairs": [{"question", "expectedAnswer"}]}``.

        The payload is validated completely before anything is stored.

        Raises:
            MalformedImportPayload: If the payload shape is invalid.
        """
        raw_pairs = payload.get("pairs") if isinstance(payload, dict) else None
        if not isinstance(raw_pairs, list):
            msg = "Import requires a 'pairs' list"
            raise MalformedImportPayload(msg)

        parsed: list[tuple[str, str]] = []
        for index, raw in enumerate(raw_pairs):
            question = raw.get("question") if isinstance(raw, dict) else None
            expected = raw.get("expectedAnswer") if isinstance(raw, dict) else None
            if not (isinstance(question, str) and question.strip()) or not (
                isinstance(expected, str) and expected.strip()
            ):
                msg = f"Pair {index} needs non-empty 'question' and 'expectedAnswer'"
                raise MalformedImportPayload(msg)
            parsed.append((question, expected))

        pairs = [self.add_pair(question, expected) for question, expected in parsed]
        logger.info("Imported %d ground truth pairs", len(pairs))
        return pairs

    # Evaluation

    def _record(self, pair: GroundTruthPair, actual_answer: str) -> EvaluationResult:
        scores = self.scorer.score(actual_answer, pair.expected_answer)
        result = EvaluationResult(
            pair_id=pair.id,
            actual_answer=actual_answer,
            ragas_score=scores.ragas_score,
            faithfulness=scores.faithfulness,
            relevance=scores.relevance,
            coherence=scores.coherence,
            timestamp=self.clock(),
        )
        self._results.append(result)
        self._metrics.add(result)
        logger.info(
            "Evaluated answer for pair %s. RAGAS: %.2f, Faithfulness: %.2f, "
            "Relevance: %.2f, Coherence: %.2f",
            pair.id,
            result.ragas_score,
            result.faithfulness,
            result.relevance,
            result.coherence,
        )
        return result

    def _contribute_trend(self, run_score: float, at: datetime) -> None:
        """Fold one run's score into the bucket for the day of ``at``."""
        day = at.date().isoformat()
        trend = self._trends.get(day)
        if trend is None:
            self._trends[day] = ScoreTrend(date=day, avg_score=run_score, count=1)
            return
        trend.avg_score = (trend.avg_score * trend.count + run_score) / (trend.count + 1)
        trend.count += 1

    def evaluate(self, pair_id: str, actual_answer: str) -> EvaluationResult:
        """Score one answer; it counts as a run of its own for trends.

        Raises:
            GroundTruthPairNotFound: If the pair id is unknown.
        """
        result = self._record(self.get_pair(pair_id), actual_answer)
        self._contribute_trend(result.ragas_score, result.timestamp)
        return result

    def batch_evaluate(
        self, evaluations: Iterable[tuple[str, str]]
    ) -> list[EvaluationResult]:
        """Score ``(pair_id, actual_answer)`` items in order.

        Unknown pair ids are skipped. The batch average contributes one run
        to the trend for the day of its last result.
        """
        results = []
        for pair_id, actual_answer in evaluations:
            pair = self._pairs.get(pair_id)
            if pair is None:
                logger.warning("Skipping unknown ground truth pair: %s", pair_id)
                continue
            results.append(self._record(pair, actual_answer))

        if results:
            self._contribute_trend(
                sum(r.ragas_score for r in results) / len(results),
                results[-1].timestamp,
            )
        logger.info("Batch evaluated %d answers", len(results))
        return results

    async def run_ground_truth(
        self,
        composer: AnswerComposer,
        pair_ids: list[str] | None = None,
    ) -> dict[str, Any]:
        """Ask every selected question and score the answers as one run.

        Pairs that are unknown, or whose answer came back with an error, are
        reported under ``skipped`` instead of being scored.

        Returns:
            ``{"results", "skipped", "averageScore"}``.
        """
        selected = list(self._pairs) if pair_ids is None else pair_ids
        evaluations: list[tuple[str, str]] = []
        skipped: list[dict[str, str]] = []

        for pair_id in selected:
            pair = self._pairs.get(pair_id)
            if pair is None:
                skipped.append({"pairId": pair_id, "error": "Ground truth pair not found"})
                continue
            response = await composer.ask(pair.question)
            if response.error is not None:
                skipped.append({"pairId": pair_id, "error": response.error})
                continue
            evaluations.append((pair_id, response.answer))

        results = self.batch_evaluate(evaluations)
        average = (
            _score(sum(r.ragas_score for r in results) / len(results)) if results else 0.0
        )
        logger.info(
            "Ground truth run: %d scored, %d skipped, average %.2f",
            len(results),
            len(skipped),
            average,
        )
        return {
            "results": [result.to_dict() for result in results],
            "skipped": skipped,
            "averageScore": average,
        }

    def results_for(self, pair_id: str) -> list[EvaluationResult]:
        return [result for result in self._results if result.pair_id == pair_id]

    # Aggregates

    def _rebuild_metrics(self) -> None:
        self._metrics = _RunningMetrics(self.recent_size)
        for result in self._results:
            self._metrics.add(result)

    def metrics(self) -> dict[str, Any]:
        return self._metrics.to_dict()

    def trends(self) -> list[dict[str, Any]]:
        return [self._trends[day].to_dict() for day in sorted(self._trends)]

    def distribution(self) -> dict[str, Any]:
        """Bucket counts of ragas scores and nearest-rank percentiles."""
        if not self._results:
            return {"distribution": {}, "percentiles": {}}

        scores = sorted(result.ragas_score for result in self._results)
        buckets = dict.fromkeys((label for label, _ in DISTRIBUTION_BUCKETS), 0)
        for score in scores:
            label = next(label for label, upper in DISTRIBUTION_BUCKETS if score < upper)
            buckets[label] += 1

        percentiles = {
            name: scores[math.floor(len(scores) * fraction)]
            for name, fraction in PERCENTILES
        }
        return {"distribution": buckets, "percentiles": percentiles}

    def report(self) -> dict[str, Any]:
        metrics = self.metrics()
        quality_level = next(
            (
                level
                for threshold, level in QUALITY_LEVELS
                if metrics["avgRagasScore"] >= threshold
            ),
            "Poor",
        )
        recommendations = [
            message
            for key, message in (
                (
                    "avgFaithfulness",
                    "Focus on ensuring answers are supported by source material",
                ),
                (
                    "avgRelevance",
                    "Improve retrieval to surface more relevant information",
                ),
                ("avgCoherence", "Enhance answer formatting and structure"),
            )
            if metrics[key] < RECOMMENDATION_THRESHOLD
        ]
        return {
            "timestamp": self.clock().isoformat(),
            "summaryMetrics": metrics,
            "qualityLevel": quality_level,
            "trends": self.trends(),
            "distribution": self.distribution(),
            "recommendations": recommendations,
        }

    def export(self) -> dict[str, Any]:
        return {
            "groundTruthPairs": [pair.to_dict() for pair in self._pairs.values()],
            "evaluationResults": [
                {
                    "pairId": pair_id,
                    "results": [r.to_dict() for r in self.results_for(pair_id)],
                }
                for pair_id in dict.fromkeys(r.pair_id for r in self._results)
            ],
            "metrics": self.metrics(),
            "trends": self.trends(),
            "exportedAt": self.clock().isoformat(),
        }

    def clear_all(self) -> None:
        self._pairs.clear()
        self._results = []
        self._metrics = _RunningMetrics(self.recent_size)
        self._trends.clear()
        logger.info("Cleared all RAGAS evaluation data")
