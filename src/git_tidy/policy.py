"""Branch protection policy.

Decides for every branch whether it is protected, eligible for deletion or
kept because it does not pass the merged/age filters.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable

from git_tidy.config import EffectiveConfig, MatcherKind
from git_tidy.git import BranchRecord

logger = logging.getLogger(__name__)

# Protection entries are checked in this order; the first match gives the reason.
MATCH_ORDER = (MatcherKind.EXACT, MatcherKind.GLOB, MatcherKind.REGEX)


class DecisionKind(Enum):
    """Outcome for one branch."""

    PROTECTED = "protected"
    ELIGIBLE = "eligible"
    FILTERED_OUT = "filtered out"


@dataclass(frozen=True)
class Decision:
    """Outcome for one branch and why."""

    kind: DecisionKind
    reason: str

    @property
    def protected(self) -> bool:
        return self.kind is DecisionKind.PROTECTED

    @property
    def eligible(self) -> bool:
        return self.kind is DecisionKind.ELIGIBLE


ELIGIBLE = Decision(DecisionKind.ELIGIBLE, "eligible")


def resolve(branch_name: str, is_current: bool, config: EffectiveConfig) -> Decision:
    """Decide whether a branch is protected.

    The current branch is always protected, whatever the configuration says.
    """
    if is_current:
        return Decision(DecisionKind.PROTECTED, "current branch")

    for kind in MATCH_ORDER:
        for matcher in config.matchers(kind):
            if matcher.matches(branch_name):
                if kind is MatcherKind.EXACT:
                    return Decision(DecisionKind.PROTECTED, "protected name")
                return Decision(DecisionKind.PROTECTED, f"matches pattern {matcher.pattern}")

    if any(matcher.matches(branch_name) for matcher in config.keep_patterns):
        return Decision(DecisionKind.PROTECTED, "matches keep-pattern")

    return ELIGIBLE


def apply_filters(decision: Decision, branch: BranchRecord, config: EffectiveConfig, now: datetime) -> Decision:
    """Keep eligible branches that fail the merged or age filter.

    Protected decisions pass through unchanged.
    """
    if not decision.eligible:
        return decision
    if config.merged_only and not branch.merged:
        return Decision(DecisionKind.FILTERED_OUT, "not merged")
    if config.older_than is not None and branch.last_commit > now - config.older_than:
        return Decision(DecisionKind.FILTERED_OUT, "younger than threshold")
    return decision


def decide(branch: BranchRecord, config: EffectiveConfig, now: datetime) -> Decision:
    """Full decision for one branch."""
    decision = apply_filters(resolve(branch.name, branch.is_current, config), branch, config, now)
    logger.debug("%s: %s (%s)", branch.name, decision.kind.value, decision.reason)
    return decision


@dataclass(frozen=True)
class CleanupPlan:
    """Decisions for every branch of one run."""

    entries: tuple[tuple[BranchRecord, Decision], ...]

    def _of_kind(self, kind: DecisionKind) -> list[tuple[BranchRecord, Decision]]:
        return [(branch, decision) for branch, decision in self.entries if decision.kind is kind]

    @property
    def eligible(self) -> list[BranchRecord]:
        return [branch for branch, _ in self._of_kind(DecisionKind.ELIGIBLE)]

    @property
    def protected(self) -> list[tuple[BranchRecord, Decision]]:
        return self._of_kind(DecisionKind.PROTECTED)

    @property
    def filtered_out(self) -> list[tuple[BranchRecord, Decision]]:
        return self._of_kind(DecisionKind.FILTERED_OUT)


def plan(branches: Iterable[BranchRecord], config: EffectiveConfig, now: datetime) -> CleanupPlan:
    """Decide every branch against the same configuration snapshot."""
    return CleanupPlan(tuple((branch, decide(branch, config, now)) for branch in branches))
