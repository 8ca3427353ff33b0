from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from core.errors import PersistenceFailure
from core.models import PredictionDirection
from utils.config_loader import CalibrationConfig
from utils.json_store import read_json, write_json_atomic
from utils.logger import BotLogger


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class CalibrationRecord:
    id: str
    question: str
    predicted_probability: float
    direction: PredictionDirection
    venue: str = "unknown"
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))
    resolved_at: Optional[datetime] = None
    outcome: Optional[bool] = None
    brier_score: Optional[float] = None

    @property
    def resolved(self) -> bool:
        return self.outcome is not None

    @property
    def yes_probability(self) -> float:
        if self.direction == PredictionDirection.YES:
            return self.predicted_probability
        return 1.0 - self.predicted_probability

    @property
    def correct(self) -> Optional[bool]:
        if self.outcome is None:
            return None
        return (self.direction == PredictionDirection.YES) == self.outcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "predicted_probability": self.predicted_probability,
            "direction": self.direction.value,
            "venue": self.venue,
            "tags": list(self.tags),
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "outcome": self.outcome,
            "brier_score": self.brier_score,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CalibrationRecord":
        outcome = payload.get("outcome")
        brier = payload.get("brier_score")
        return cls(
            id=str(payload["id"]),
            question=str(payload.get("question", "")),
            predicted_probability=float(payload.get("predicted_probability", 0.5)),
            direction=PredictionDirection(str(payload.get("direction", "YES")).upper()),
            venue=str(payload.get("venue", "unknown")),
            tags=[str(tag) for tag in payload.get("tags", []) or []],
            created_at=_parse_ts(payload.get("created_at")) or datetime.now(tz=timezone.utc),
            resolved_at=_parse_ts(payload.get("resolved_at")),
            outcome=None if outcome is None else bool(outcome),
            brier_score=None if brier is None else float(brier),
        )


@dataclass(slots=True)
class CalibrationBucket:
    label: str
    predictions: int = 0
    expected_rate: float = 0.0
    actual_rate: float = 0.0

    @property
    def calibration_error(self) -> float:
        return abs(self.actual_rate - self.expected_rate) if self.predictions else 0.0


@dataclass(slots=True)
class VenueStats:
    predictions: int
    brier_score: float
    accuracy: float


@dataclass(slots=True)
class CalibrationStats:
    total: int
    resolved: int
    pending: int
    brier_score: float
    accuracy: float
    current_streak: int
    streak_type: str
    best_streak: int
    buckets: List[CalibrationBucket] = field(default_factory=list)
    by_venue: Dict[str, VenueStats] = field(default_factory=dict)
    by_tag: Dict[str, float] = field(default_factory=dict)

    @property
    def grade(self) -> str:
        return grade_for(self.brier_score) if self.resolved else "-"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "resolved": self.resolved,
            "pending": self.pending,
            "brier_score": round(self.brier_score, 6),
            "accuracy": round(self.accuracy, 6),
            "streak": self.current_streak,
            "streak_type": self.streak_type,
            "best_streak": self.best_streak,
            "grade": self.grade,
        }


def brier_score(probability: float, direction: PredictionDirection, outcome: bool) -> float:
    yes_prob = probability if PredictionDirection(direction) == PredictionDirection.YES else 1.0 - probability
    return (yes_prob - (1.0 if outcome else 0.0)) ** 2


def grade_for(brier: float) -> str:
    if brier < 0.1:
        return "S"
    if brier < 0.15:
        return "A"
    if brier < 0.2:
        return "B"
    if brier < 0.25:
        return "C"
    if brier < 0.3:
        return "D"
    return "F"


def calibration_multiplier(stats: CalibrationStats, config: CalibrationConfig | None = None) -> float:
    """Confidence multiplier in [floor, 1.0] derived from the running Brier score."""
    cfg = config or CalibrationConfig()
    if stats.resolved < cfg.min_resolved:
        return 1.0
    brier = stats.brier_score
    if brier <= cfg.well_calibrated:
        return 1.0
    moderate = 1.0 - cfg.moderate_penalty
    if brier <= cfg.poorly_calibrated:
        span = cfg.poorly_calibrated - cfg.well_calibrated
        fraction = (brier - cfg.well_calibrated) / span if span > 0 else 1.0
        return 1.0 - cfg.moderate_penalty * fraction
    span = cfg.worst_brier - cfg.poorly_calibrated
    fraction = min(1.0, (brier - cfg.poorly_calibrated) / span) if span > 0 else 1.0
    return max(cfg.floor, moderate - (moderate - cfg.floor) * fraction)


class CalibrationStore:
    """Ordered JSON list of prediction records."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path) if path else Path("data") / "predictions.json"

    def load(self) -> List[CalibrationRecord]:
        data = read_json(self.path, default=[])
        if not isinstance(data, list):
            return []
        records: List[CalibrationRecord] = []
        for payload in data:
            if isinstance(payload, dict) and payload.get("id"):
                records.append(CalibrationRecord.from_dict(payload))
        return records

    def save(self, records: Iterable[CalibrationRecord]) -> None:
        write_json_atomic(self.path, [record.to_dict() for record in records])


class CalibrationLedger:
    """Tracks forecasts and their resolutions; scores own accuracy with Brier."""

    def __init__(
        self,
        store: CalibrationStore | None = None,
        config: CalibrationConfig | None = None,
        logger: BotLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.config = config or CalibrationConfig()
        self.logger = logger or BotLogger(__name__)
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._records: List[CalibrationRecord] = store.load() if store else []
        self._index: Dict[str, CalibrationRecord] = {rec.id: rec for rec in self._records}
        self.last_error: Optional[PersistenceFailure] = None

    @property
    def records(self) -> List[CalibrationRecord]:
        return list(self._records)

    def get(self, record_id: str) -> CalibrationRecord:
        return self._index[record_id]

    def pending(self) -> List[CalibrationRecord]:
        return [rec for rec in self._records if not rec.resolved]

    def record(
        self,
        question: str,
        probability: float,
        direction: PredictionDirection | str,
        venue: str = "unknown",
        tags: Iterable[str] | None = None,
    ) -> CalibrationRecord:
        rec = CalibrationRecord(
            id=uuid.uuid4().hex[:12],
            question=question,
            predicted_probability=min(1.0, max(0.0, float(probability))),
            direction=PredictionDirection(str(getattr(direction, "value", direction)).upper()),
            venue=venue,
            tags=list(tags or []),
            created_at=self._clock(),
        )
        self._records.append(rec)
        self._index[rec.id] = rec
        self._persist()
        self.logger.info("prediction recorded", id=rec.id, probability=rec.predicted_probability, direction=rec.direction.value)
        return rec

    def resolve(self, record_id: str, outcome: bool) -> CalibrationRecord:
        rec = self._index.get(record_id)
        if rec is None:
            raise KeyError(record_id)
        if rec.resolved:
            raise ValueError(f"prediction {record_id} already resolved")
        rec.outcome = bool(outcome)
        rec.brier_score = brier_score(rec.predicted_probability, rec.direction, rec.outcome)
        rec.resolved_at = self._clock()
        self._persist()
        self.logger.info("prediction resolved", id=rec.id, outcome=rec.outcome, brier=round(rec.brier_score, 4))
        return rec

    def _persist(self) -> None:
        if not self.store:
            return
        try:
            self.store.save(self._records)
            self.last_error = None
        except PersistenceFailure as exc:
            self.last_error = exc
            self.logger.error("calibration ledger write failed", path=str(self.store.path), error=str(exc.original or exc))

    def aggregate(self) -> CalibrationStats:
        resolved = [rec for rec in self._records if rec.resolved]
        count = len(resolved)
        brier = sum(rec.brier_score or 0.0 for rec in resolved) / count if count else 0.0
        accuracy = sum(1 for rec in resolved if rec.correct) / count if count else 0.0

        buckets = [CalibrationBucket(label=f"{i * 10}-{(i + 1) * 10}%") for i in range(10)]
        for rec in resolved:
            prob = rec.yes_probability
            bucket = buckets[min(9, int(prob * 10))]
            bucket.predictions += 1
            bucket.expected_rate += prob
            bucket.actual_rate += 1.0 if rec.outcome else 0.0
        for bucket in buckets:
            if bucket.predictions:
                bucket.expected_rate /= bucket.predictions
                bucket.actual_rate /= bucket.predictions

        venue_totals: Dict[str, List[CalibrationRecord]] = {}
        for rec in resolved:
            venue_totals.setdefault(rec.venue, []).append(rec)
        by_venue = {
            venue: VenueStats(
                predictions=len(items),
                brier_score=sum(r.brier_score or 0.0 for r in items) / len(items),
                accuracy=sum(1 for r in items if r.correct) / len(items),
            )
            for venue, items in venue_totals.items()
        }

        tag_totals: Dict[str, List[float]] = {}
        for rec in resolved:
            for tag in rec.tags:
                tag_totals.setdefault(tag, []).append(rec.brier_score or 0.0)
        by_tag = {tag: sum(values) / len(values) for tag, values in tag_totals.items()}

        chronological = sorted(
            resolved,
            key=lambda rec: rec.resolved_at or datetime.min.replace(tzinfo=timezone.utc),
        )
        current, streak_type = _current_streak(chronological)

        return CalibrationStats(
            total=len(self._records),
            resolved=count,
            pending=len(self._records) - count,
            brier_score=brier,
            accuracy=accuracy,
            current_streak=current,
            streak_type=streak_type,
            best_streak=_best_win_streak(chronological),
            buckets=[bucket for bucket in buckets if bucket.predictions],
            by_venue=by_venue,
            by_tag=by_tag,
        )

    def calibration_multiplier(self, stats: CalibrationStats | None = None) -> float:
        return calibration_multiplier(stats or self.aggregate(), self.config)


def _current_streak(chronological: List[CalibrationRecord]) -> tuple[int, str]:
    streak = 0
    kind = "NONE"
    for rec in reversed(chronological):
        outcome_kind = "WIN" if rec.correct else "LOSS"
        if streak == 0:
            kind = outcome_kind
            streak = 1
        elif outcome_kind == kind:
            streak += 1
        else:
            break
    return streak, kind


def _best_win_streak(chronological: List[CalibrationRecord]) -> int:
    best = run = 0
    for rec in chronological:
        run = run + 1 if rec.correct else 0
        best = max(best, run)
    return best


def format_report(stats: CalibrationStats) -> str:
    if not stats.resolved:
        return f"Calibration: {stats.total} predictions, none resolved yet"
    lines = [
        f"Calibration grade {stats.grade}: Brier {stats.brier_score:.3f}, accuracy {stats.accuracy * 100:.1f}%",
        f"Resolved {stats.resolved}/{stats.total}, streak {stats.current_streak} {stats.streak_type.lower()}, best {stats.best_streak}",
    ]
    for venue, venue_stats in sorted(stats.by_venue.items()):
        lines.append(
            f"{venue}: Brier {venue_stats.brier_score:.3f} | acc {venue_stats.accuracy * 100:.0f}% | n={venue_stats.predictions}"
        )
    return "\n".join(lines)


__all__ = [
    "CalibrationRecord",
    "CalibrationBucket",
    "VenueStats",
    "CalibrationStats",
    "CalibrationStore",
    "CalibrationLedger",
    "brier_score",
    "grade_for",
    "calibration_multiplier",
    "format_report",
]
