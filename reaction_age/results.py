from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any

from .engine import ReactionTestConfig, ReactionTestEngine
from .norms import MAX_NORM_AGE, MIN_NORM_AGE, NormativeResult, Sex, Verdict, calculate_bio_age
from .stats import FinalResult, RoundSummary


@dataclass(frozen=True, slots=True)
class SubjectProfile:
    name: str
    age: int
    sex: Sex

    def within_norm_range(self) -> bool:
        return MIN_NORM_AGE <= self.age <= MAX_NORM_AGE


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """Persistable summary of one completed test session.

    Storage treats this as an opaque payload; to_dict()/from_dict() define the
    JSON shape used both in the database and in exports.
    """

    subject: SubjectProfile
    recorded_at_utc: str
    config: ReactionTestConfig
    result: FinalResult
    norm: NormativeResult | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": {
                "name": self.subject.name,
                "age": int(self.subject.age),
                "sex": self.subject.sex.value,
            },
            "recorded_at_utc": self.recorded_at_utc,
            "config": asdict(self.config),
            "grand_average_ms": int(self.result.grand_average_ms),
            "round_averages_ms": list(self.result.round_averages_ms),
            "rounds": [
                {
                    "round_number": r.round_number,
                    "count": r.count,
                    "average_ms": r.average_ms,
                    "times_ms": list(r.times_ms),
                    "median_ms": r.median_ms,
                    "stdev_ms": r.stdev_ms,
                }
                for r in self.result.rounds
            ],
            "norm": None
            if self.norm is None
            else {
                "chronological_age": self.norm.chronological_age,
                "biological_age": self.norm.biological_age,
                "tempo_ratio": self.norm.tempo_ratio,
                "norm_ms": self.norm.norm_ms,
                "verdict": self.norm.verdict.value,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionRecord":
        subject = data["subject"]
        sex = Sex.parse(subject.get("sex")) or Sex.MALE
        rounds = tuple(
            RoundSummary(
                round_number=int(r["round_number"]),
                count=int(r["count"]),
                average_ms=int(r["average_ms"]),
                times_ms=tuple(int(t) for t in r.get("times_ms", ())),
                median_ms=float(r.get("median_ms", 0.0)),
                stdev_ms=float(r.get("stdev_ms", 0.0)),
            )
            for r in data.get("rounds", ())
        )
        raw_norm = data.get("norm")
        norm = None
        if isinstance(raw_norm, dict):
            norm = NormativeResult(
                chronological_age=raw_norm["chronological_age"],
                biological_age=float(raw_norm["biological_age"]),
                tempo_ratio=float(raw_norm["tempo_ratio"]),
                norm_ms=float(raw_norm["norm_ms"]),
                verdict=Verdict(raw_norm["verdict"]),
            )
        return cls(
            subject=SubjectProfile(name=str(subject.get("name", "")), age=int(subject["age"]), sex=sex),
            recorded_at_utc=str(data.get("recorded_at_utc", "")),
            config=ReactionTestConfig.from_dict(data.get("config")),
            result=FinalResult(
                grand_average_ms=int(data["grand_average_ms"]),
                round_averages_ms=tuple(int(v) for v in data.get("round_averages_ms", ())),
                rounds=rounds,
            ),
            norm=norm,
        )


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def session_record_from_engine(
    engine: ReactionTestEngine,
    *,
    subject: SubjectProfile,
) -> SessionRecord | None:
    """Build a SessionRecord from an engine with at least one completed round."""

    result = engine.final_results()
    if result is None:
        return None
    return SessionRecord(
        subject=subject,
        recorded_at_utc=_utc_now_iso(),
        config=engine.config,
        result=result,
        norm=calculate_bio_age(result.grand_average_ms, subject.age, subject.sex),
    )
