"""Progress evaluator: pure function of (requirement, stats)."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from wastewise.achievements.requirements import AccountStats, Predicate, parse_requirements

NO_REQUIREMENTS = "no requirements defined"


@dataclass(frozen=True)
class Evaluation:
    percent: int
    missing: list[str]

    @property
    def is_complete(self) -> bool:
        return self.percent >= 100


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def evaluate_predicates(predicates: list[Predicate], stats: AccountStats) -> Evaluation:
    """percent = round(100 * satisfied / N). No predicates never completes."""
    if not predicates:
        return Evaluation(percent=0, missing=[NO_REQUIREMENTS])

    missing = [msg for msg in (p.check(stats) for p in predicates) if msg is not None]
    satisfied = len(predicates) - len(missing)
    return Evaluation(percent=_round_half_up(satisfied / len(predicates) * 100), missing=missing)


def evaluate(requirement: Mapping[str, Any] | None, stats: AccountStats) -> Evaluation:
    """Evaluate a stored requirement object against a stats snapshot."""
    return evaluate_predicates(parse_requirements(requirement), stats)
