"""
Priority resolution for rules contending for the same actuator.

Each (rule, action) pair admitted in a pass is a candidate for its
actuator. The winner per actuator is the candidate whose rule sorts first
by ``(priority ascending, created_at descending, id)``: lower priority
numbers win and, on equal priority, the most recently created rule wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from ..models.rule import AutomationRule, RuleAction
from .hysteresis import Admission
from .rule_store import ensure_utc


logger = logging.getLogger("priority_resolver")


@dataclass
class Candidate:
    rule: AutomationRule
    action: RuleAction
    admission: Admission


@dataclass
class Resolution:
    # actuator_id -> winning candidate
    winners: Dict[str, Candidate] = field(default_factory=dict)
    # rule_id -> ids of the rules that beat it, for rules that won nothing
    superseded: Dict[str, List[str]] = field(default_factory=dict)

    def winning_rule_ids(self) -> set[str]:
        return {candidate.rule.id for candidate in self.winners.values()}

    def actions_for(self, rule_id: str) -> List[Candidate]:
        return sorted(
            (c for c in self.winners.values() if c.rule.id == rule_id),
            key=lambda c: c.action.action_order,
        )


def priority_key(rule: AutomationRule) -> tuple:
    created_ts = ensure_utc(rule.created_at).timestamp() if rule.created_at else 0.0
    return (rule.priority, -created_ts, rule.id)


def resolve(candidates: Iterable[Candidate]) -> Resolution:
    by_actuator: Dict[str, List[Candidate]] = {}
    for candidate in candidates:
        by_actuator.setdefault(candidate.action.actuator_id, []).append(candidate)

    resolution = Resolution()
    losers: Dict[str, set[str]] = {}
    for actuator_id, contenders in by_actuator.items():
        contenders.sort(key=lambda c: priority_key(c.rule))
        winner = contenders[0]
        resolution.winners[actuator_id] = winner
        for loser in contenders[1:]:
            losers.setdefault(loser.rule.id, set()).add(winner.rule.id)
        if len(contenders) > 1:
            logger.debug(
                "Actuator %s contested by %s rules; winner rule_id=%s priority=%s",
                actuator_id,
                len(contenders),
                winner.rule.id,
                winner.rule.priority,
            )

    winning = resolution.winning_rule_ids()
    for rule_id, beaten_by in losers.items():
        if rule_id not in winning:
            resolution.superseded[rule_id] = sorted(beaten_by)
    return resolution
