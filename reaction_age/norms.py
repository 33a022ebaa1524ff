"""Normative biological-age estimate from a mean simple reaction time.

The table holds mean simple visual reaction times (ms) of children aged 7-16.
Ages outside that range are looked up in the nearest boundary bucket while the
reported chronological age stays as given.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Mapping


class Sex(StrEnum):
    MALE = "male"
    FEMALE = "female"

    @classmethod
    def parse(cls, value: object) -> "Sex | None":
        if isinstance(value, Sex):
            return value
        key = str(value).strip().lower()
        for member in cls:
            if member.value == key:
                return member
        return None


class Verdict(StrEnum):
    ACCELERATED = "accelerated"
    NORMAL = "normal"
    DELAYED = "delayed"


VERDICT_LABELS: Mapping[Verdict, str] = MappingProxyType(
    {
        Verdict.ACCELERATED: "Accelerated development (biological age > chronological)",
        Verdict.NORMAL: "Normal development",
        Verdict.DELAYED: "Delayed development (biological age < chronological)",
    }
)

MIN_NORM_AGE = 7
MAX_NORM_AGE = 16

ACCELERATED_BELOW = 0.95
DELAYED_ABOVE = 1.10

BIO_AGE_NORMS_MS: Mapping[Sex, Mapping[int, float]] = MappingProxyType(
    {
        Sex.MALE: MappingProxyType(
            {
                7: 357.86,
                8: 344.72,
                9: 302.67,
                10: 295.73,
                11: 264.15,
                12: 262.26,
                13: 248.71,
                14: 243.6,
                15: 235.9,
                16: 231.6,
            }
        ),
        Sex.FEMALE: MappingProxyType(
            {
                7: 387.06,
                8: 347.32,
                9: 311.79,
                10: 304.15,
                11: 272.93,
                12: 268.74,
                13: 256.78,
                14: 251.77,
                15: 247.3,
                16: 239.4,
            }
        ),
    }
)


@dataclass(frozen=True, slots=True)
class NormativeResult:
    chronological_age: float
    biological_age: float
    tempo_ratio: float
    norm_ms: float
    verdict: Verdict

    @property
    def label(self) -> str:
        return VERDICT_LABELS[self.verdict]


def norm_table_age(age: float) -> int:
    return min(max(int(math.floor(age)), MIN_NORM_AGE), MAX_NORM_AGE)


def calculate_bio_age(
    actual_ms: float,
    age: float,
    sex: Sex | str,
    *,
    fallback: Sex | None = Sex.MALE,
) -> NormativeResult | None:
    """Estimate biological age; None when there is nothing to compare against.

    An unrecognized ``sex`` uses the ``fallback`` bucket; pass ``fallback=None``
    to get None instead.
    """

    if actual_ms <= 0:
        return None

    bucket = Sex.parse(sex)
    if bucket is None:
        bucket = fallback
    if bucket is None:
        return None

    norm_ms = BIO_AGE_NORMS_MS[bucket].get(norm_table_age(age))
    if norm_ms is None:
        return None

    ratio = float(actual_ms) / norm_ms
    bio_age = float(age) / ratio

    verdict = Verdict.NORMAL
    if ratio < ACCELERATED_BELOW:
        verdict = Verdict.ACCELERATED
    elif ratio > DELAYED_ABOVE:
        verdict = Verdict.DELAYED

    return NormativeResult(
        chronological_age=age,
        biological_age=round(bio_age, 2),
        tempo_ratio=round(ratio, 2),
        norm_ms=norm_ms,
        verdict=verdict,
    )
