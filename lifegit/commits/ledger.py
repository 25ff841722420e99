"""Append-only commit log per branch.

History is returned oldest first, ordered by (timestamp, sequence) so
commits sharing a timestamp keep their insertion order. Presentation may
reverse it.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import UTC, date, datetime, timedelta
from typing import Optional

from lifegit.core.events import EventBus, EventType
from lifegit.core.exceptions import ValidationError
from lifegit.core.models import Commit, CommitStatistics, CommitType
from lifegit.db.store import Store

logger = logging.getLogger("lifegit.commits.ledger")

FREQUENCY_WINDOW_DAYS = 30


class CommitLedger:
    """Records and queries commits.

    Injected dependencies:
        store: Persistence for commits.
        events: Optional bus notified of every appended commit.
    """

    def __init__(self, store: Store, events: Optional[EventBus] = None):
        self.store = store
        self.events = events

    def append(self, commit: Commit) -> Commit:
        if not commit.message.strip():
            raise ValidationError("Commit message must not be empty")
        stored = self.store.create_commit(commit)
        logger.debug("Commit %s appended to branch %s", stored.id, stored.branch_id)
        if self.events is not None:
            self.events.emit(
                EventType.COMMIT_APPENDED,
                commit_id=str(stored.id),
                branch_id=str(stored.branch_id),
                type=stored.type.value,
            )
        return stored

    def record(
        self,
        message: str,
        commit_type: CommitType,
        branch_id: uuid.UUID,
        related_task_id: Optional[uuid.UUID] = None,
    ) -> Commit:
        return self.append(
            Commit(
                message=message.strip(),
                type=commit_type,
                branch_id=branch_id,
                related_task_id=related_task_id,
            )
        )

    def history(self, branch_id: uuid.UUID) -> list[Commit]:
        commits = self.store.list_commits_for_branch(branch_id)
        commits.sort(key=lambda c: (c.timestamp, c.sequence))
        return commits

    def count(self, branch_id: uuid.UUID) -> int:
        return self.store.count_commits_for_branch(branch_id)

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def by_type(self, branch_id: uuid.UUID, commit_type: CommitType) -> list[Commit]:
        return [c for c in self.history(branch_id) if c.type == commit_type]

    def between(
        self,
        start: datetime,
        end: datetime,
        branch_id: Optional[uuid.UUID] = None,
    ) -> list[Commit]:
        """Commits with start <= timestamp <= end."""
        source = self.history(branch_id) if branch_id else self._all()
        return [c for c in source if start <= c.timestamp <= end]

    def recent(self, limit: int = 20) -> list[Commit]:
        """Newest commits across all branches, newest first."""
        return list(reversed(self._all()))[:limit]

    def search(self, text: str) -> list[Commit]:
        needle = text.strip().lower()
        if not needle:
            return []
        return [c for c in self._all() if needle in c.message.lower()]

    def _all(self) -> list[Commit]:
        commits = self.store.list_commits()
        commits.sort(key=lambda c: (c.timestamp, c.sequence))
        return commits

    # -------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------

    def statistics(self, branch_id: uuid.UUID, now: Optional[datetime] = None) -> CommitStatistics:
        commits = self.history(branch_id)
        if not commits:
            return CommitStatistics(total_commits=0)

        now = now or datetime.now(UTC)
        window_start = now - timedelta(days=FREQUENCY_WINDOW_DAYS)
        recent = sum(1 for c in commits if c.timestamp >= window_start)
        weekdays = Counter(c.timestamp.weekday() for c in commits)

        return CommitStatistics(
            total_commits=len(commits),
            counts_by_type=dict(Counter(c.type.value for c in commits)),
            commit_frequency=recent / FREQUENCY_WINDOW_DAYS,
            most_active_weekday=weekdays.most_common(1)[0][0],
            first_commit_at=commits[0].timestamp,
            last_commit_at=commits[-1].timestamp,
        )

    def streak(self, branch_id: uuid.UUID, today: Optional[date] = None) -> int:
        """Consecutive days with at least one commit, ending today or yesterday."""
        days = {c.timestamp.astimezone(UTC).date() for c in self.history(branch_id)}
        if not days:
            return 0

        cursor = today or datetime.now(UTC).date()
        if cursor not in days:
            cursor -= timedelta(days=1)

        streak = 0
        while cursor in days:
            streak += 1
            cursor -= timedelta(days=1)
        return streak
