"""
Follow-up scheduling for resolved anomalies.

When a dialogue session ends, the anomaly gets four re-checks: a week, a month,
three months and a year later. Each re-check reopens a fresh dialogue session
with a question about whether the explanation still holds.

Due tasks are handed out with a claim-and-lease protocol:
- ``poll_due(now)`` claims due tasks in one ``BEGIN IMMEDIATE`` transaction,
  so two pollers never receive the same task while its lease is live.
- ``consume(task_id)`` deletes a task once it has been acted on.
- ``release(task_id)`` hands a claimed task back immediately.
- A claim that is neither consumed nor released expires after
  ``claim_lease_seconds`` and the task is offered again (at-least-once).
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Optional

from hunt_analytics.config import FollowUpConfig, RetryConfig
from hunt_analytics.retry import call_with_retry
from hunt_analytics.store.sqlite import from_timestamp, get_connection, to_timestamp, transaction

logger = logging.getLogger(__name__)


class FollowUpKind(str, Enum):
    """How far after resolution a re-check happens."""

    SHORT_TERM = "short_term"
    """One week: is the effect still visible?"""

    MEDIUM_TERM = "medium_term"
    """One month: has the product returned to its usual level?"""

    LONG_TERM = "long_term"
    """Three months: has the same cause recurred?"""

    YEARLY = "yearly"
    """One year: plan for it this season?"""

    @property
    def question_type(self) -> str:
        return {
            "short_term": "short_term_effect",
            "medium_term": "medium_term_effect",
            "long_term": "long_term_pattern",
            "yearly": "yearly_review",
        }[self.value]


@dataclass(frozen=True)
class FollowUpTask:
    """A scheduled re-check of a resolved anomaly."""

    task_id: str
    anomaly_ref: str
    due_at: datetime
    kind: FollowUpKind
    created_at: datetime
    explanation: str = ""
    claimed_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "anomaly_ref": self.anomaly_ref,
            "due_at": self.due_at.isoformat(),
            "kind": self.kind.value,
            "question_type": self.kind.question_type,
            "created_at": self.created_at.isoformat(),
            "explanation": self.explanation,
            "claimed_at": self.claimed_at.isoformat() if self.claimed_at else None,
        }


class FollowUpTaskStore:
    """SQLite table of pending follow-up tasks."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self.conn = get_connection(db_path)
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS followup_tasks (
                task_id TEXT PRIMARY KEY,
                anomaly_ref TEXT NOT NULL,
                kind TEXT NOT NULL,
                due_at TEXT NOT NULL,
                created_at TEXT NOT NULL,
                explanation TEXT DEFAULT '',
                claimed_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_followup_due ON followup_tasks(due_at);
            CREATE INDEX IF NOT EXISTS idx_followup_ref ON followup_tasks(anomaly_ref);
        """)

    @staticmethod
    def _row_to_task(row) -> FollowUpTask:
        return FollowUpTask(
            task_id=row["task_id"],
            anomaly_ref=row["anomaly_ref"],
            due_at=from_timestamp(row["due_at"]),
            kind=FollowUpKind(row["kind"]),
            created_at=from_timestamp(row["created_at"]),
            explanation=row["explanation"] or "",
            claimed_at=from_timestamp(row["claimed_at"]),
        )

    def insert_many(self, tasks: Iterable[FollowUpTask]) -> int:
        """Insert tasks, ignoring ids already present. Returns how many were new."""
        rows = [
            (
                t.task_id,
                t.anomaly_ref,
                t.kind.value,
                to_timestamp(t.due_at),
                to_timestamp(t.created_at),
                t.explanation,
            )
            for t in tasks
        ]
        with self._lock, transaction(self.conn):
            before = self.conn.total_changes
            self.conn.executemany("""
                INSERT OR IGNORE INTO followup_tasks
                (task_id, anomaly_ref, kind, due_at, created_at, explanation)
                VALUES (?, ?, ?, ?, ?, ?)
            """, rows)
            return self.conn.total_changes - before

    def claim_due(self, now: datetime, lease: timedelta) -> list[FollowUpTask]:
        """Mark and return every due task that is unclaimed or whose lease ran out."""
        now_ts = to_timestamp(now)
        stale_ts = to_timestamp(now - lease)
        claimed = []

        with self._lock, transaction(self.conn):
            rows = self.conn.execute("""
                SELECT * FROM followup_tasks
                WHERE due_at <= ? AND (claimed_at IS NULL OR claimed_at <= ?)
                ORDER BY due_at, task_id
            """, (now_ts, stale_ts)).fetchall()

            for row in rows:
                # Compare-and-mark: only take the row if nobody re-claimed it since the read
                cur = self.conn.execute("""
                    UPDATE followup_tasks SET claimed_at = ?
                    WHERE task_id = ? AND claimed_at IS ?
                """, (now_ts, row["task_id"], row["claimed_at"]))
                if cur.rowcount == 1:
                    claimed.append(self._row_to_task(row))

        return [
            FollowUpTask(
                task_id=t.task_id,
                anomaly_ref=t.anomaly_ref,
                due_at=t.due_at,
                kind=t.kind,
                created_at=t.created_at,
                explanation=t.explanation,
                claimed_at=from_timestamp(now_ts),
            )
            for t in claimed
        ]

    def delete(self, task_id: str) -> bool:
        with self._lock, transaction(self.conn):
            cur = self.conn.execute("DELETE FROM followup_tasks WHERE task_id = ?", (task_id,))
            return cur.rowcount == 1

    def unclaim(self, task_id: str) -> bool:
        with self._lock, transaction(self.conn):
            cur = self.conn.execute(
                "UPDATE followup_tasks SET claimed_at = NULL WHERE task_id = ? AND claimed_at IS NOT NULL",
                (task_id,),
            )
            return cur.rowcount == 1

    def list_tasks(self, anomaly_ref: Optional[str] = None) -> list[FollowUpTask]:
        with self._lock:
            if anomaly_ref:
                rows = self.conn.execute(
                    "SELECT * FROM followup_tasks WHERE anomaly_ref = ? ORDER BY due_at, task_id",
                    (anomaly_ref,),
                ).fetchall()
            else:
                rows = self.conn.execute(
                    "SELECT * FROM followup_tasks ORDER BY due_at, task_id"
                ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def close(self):
        self.conn.close()


class FollowUpScheduler:
    """Registers and hands out follow-up tasks."""

    def __init__(
        self,
        config: Optional[FollowUpConfig] = None,
        store: Optional[FollowUpTaskStore] = None,
        retry: Optional[RetryConfig] = None,
    ):
        self.config = config or FollowUpConfig()
        self.store = store or FollowUpTaskStore(self.config.db_path)
        self.retry = retry or RetryConfig()

    @property
    def lease(self) -> timedelta:
        return timedelta(seconds=self.config.claim_lease_seconds)

    def schedule(self, anomaly_ref: str, resolved_at: datetime, explanation: str = "") -> list[FollowUpTask]:
        """Register one task per configured offset.

        Task ids derive from the anomaly, the kind and the resolution time, so
        scheduling the same resolution twice does not duplicate tasks.
        """
        tasks = []
        for kind in FollowUpKind:
            days = self.config.offsets.get(kind.value)
            if days is None:
                continue
            raw = f"{anomaly_ref}|{kind.value}|{to_timestamp(resolved_at)}"
            tasks.append(FollowUpTask(
                task_id="fu_" + hashlib.md5(raw.encode()).hexdigest()[:12],
                anomaly_ref=anomaly_ref,
                due_at=resolved_at + timedelta(days=days),
                kind=kind,
                created_at=resolved_at,
                explanation=explanation,
            ))

        inserted = call_with_retry(
            lambda: self.store.insert_many(tasks),
            self.retry,
            operation=f"schedule follow-ups for {anomaly_ref}",
        )
        logger.info(f"Scheduled {inserted} follow-up tasks for {anomaly_ref}")
        return tasks

    def poll_due(self, now: Optional[datetime] = None) -> list[FollowUpTask]:
        """Claim and return the tasks due at ``now``."""
        now = now or datetime.now()
        due = call_with_retry(
            lambda: self.store.claim_due(now, self.lease),
            self.retry,
            operation="poll follow-up tasks",
        )
        if due:
            logger.info(f"Claimed {len(due)} due follow-up tasks")
        return due

    def consume(self, task_id: str) -> bool:
        removed = call_with_retry(
            lambda: self.store.delete(task_id), self.retry, operation=f"consume follow-up {task_id}",
        )
        if not removed:
            logger.warning(f"Follow-up task {task_id} was already consumed")
        return removed

    def release(self, task_id: str) -> bool:
        return call_with_retry(
            lambda: self.store.unclaim(task_id), self.retry, operation=f"release follow-up {task_id}",
        )

    def pending(self, anomaly_ref: Optional[str] = None) -> list[FollowUpTask]:
        return self.store.list_tasks(anomaly_ref)
