"""Life version upgrades.

A branch merged into master is scored on how much effort it carried:

    commits on the branch   >= 10: +3    >= 5: +1
    days since creation     >= 7:  +2
    task completion rate    >= 0.8: +3   >= 0.5: +1
    important life area            +2

A score of at least ``upgrade_score`` (5) upgrades the life version; at
least ``major_score`` (7) makes it a major bump (v1.3 -> v2.0), otherwise a
minor one (v1.3 -> v1.4).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Optional

from lifegit.core.config import VersioningConfig
from lifegit.core.models import Branch, VersionDecision

logger = logging.getLogger("lifegit.lifecycle.versioning")


def next_version(current: str, major: bool) -> str:
    """Bump ``vMAJOR.MINOR``; anything unparseable restarts from v1.0."""
    parts = [int(p) for p in current.replace("v", "").split(".") if p.strip().isdigit()]
    if len(parts) < 2:
        return "v2.0" if major else "v1.1"
    if major:
        return f"v{parts[0] + 1}.0"
    return f"v{parts[0]}.{parts[1] + 1}"


class VersionEvaluator:
    """Scores merged branches against the upgrade rules."""

    def __init__(self, config: Optional[VersioningConfig] = None):
        self.config = config or VersioningConfig()

    def is_important_life_area(self, branch: Branch) -> bool:
        text = f"{branch.name} {branch.description}".lower()
        return any(keyword.lower() in text for keyword in self.config.important_keywords)

    def evaluate(
        self,
        branch: Branch,
        current_version: str,
        commit_count: int,
        completion_rate: float,
        now: Optional[datetime] = None,
    ) -> VersionDecision:
        now = now or datetime.now(UTC)
        days = (now - branch.created_at).total_seconds() / 86400

        score = 0
        reasons: list[str] = []

        if commit_count >= 10:
            score += 3
            reasons.append(f"frequent commits ({commit_count})")
        elif commit_count >= 5:
            score += 1
            reasons.append(f"steady commits ({commit_count})")

        if days >= 7:
            score += 2
            reasons.append(f"long-term effort ({int(days)} days)")

        if completion_rate >= 0.8:
            score += 3
            reasons.append(f"high completion ({int(completion_rate * 100)}%)")
        elif completion_rate >= 0.5:
            score += 1
            reasons.append(f"good progress ({int(completion_rate * 100)}%)")

        if self.is_important_life_area(branch):
            score += 2
            reasons.append("important life area")

        major = score >= self.config.major_score
        decision = VersionDecision(
            should_upgrade=score >= self.config.upgrade_score,
            suggested_version=next_version(current_version, major),
            reason=", ".join(reasons),
            is_important_milestone=major,
            score=score,
        )
        logger.debug(
            "Branch '%s' scored %d (%s)", branch.name, score, decision.reason or "no criteria met"
        )
        return decision
