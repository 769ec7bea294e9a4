"""
Hunt Scheduled Jobs

Background tasks that keep the dialogue loop moving:
1. Every poll interval: reopen sessions for due follow-up re-checks
2. Every poll interval: expire sessions left idle too long
3. On demand: run anomaly analysis over a sales export

Can be run as:
- Cron jobs (one shot per invocation)
- A long-running loop (``loop``)
- Manual CLI invocation
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import pandas as pd

from hunt_analytics.brain.dialogue import DialogueSessionManager
from hunt_analytics.brain.followup import FollowUpScheduler, FollowUpTaskStore
from hunt_analytics.config import EngineConfig
from hunt_analytics.core.models import ExogenousSeries, SalesPoint
from hunt_analytics.exceptions import ExternalServiceError, HuntAnalyticsError
from hunt_analytics.pipeline import AnomalyPipeline
from hunt_analytics.store.retrieval import SQLiteRetrievalStore

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """Components wired from one ``EngineConfig``."""

    config: EngineConfig
    pipeline: AnomalyPipeline
    scheduler: FollowUpScheduler
    manager: DialogueSessionManager
    store: SQLiteRetrievalStore


def build_engine(config: Optional[EngineConfig] = None) -> Engine:
    """Wire the pipeline, stores, scheduler and session manager.

    A language model is only used for question phrasing when
    ``config.llm_provider`` is set.
    """
    config = config or EngineConfig.from_env()
    store = SQLiteRetrievalStore(config.retrieval_db_path)
    scheduler = FollowUpScheduler(
        config.followup,
        store=FollowUpTaskStore(config.followup.db_path),
        retry=config.retry,
    )

    writer = None
    if config.llm_provider:
        # Import here so the core jobs run without the LLM extras
        from hunt_analytics.llm.client import LLMConfig, get_llm_client
        from hunt_analytics.llm.questions import QuestionWriter

        client = get_llm_client(LLMConfig(provider=config.llm_provider, model=config.llm_model))
        writer = QuestionWriter(client, retry=config.retry)

    manager = DialogueSessionManager(
        config.dialogue,
        scheduler=scheduler,
        store=store,
        writer=writer,
        retry=config.retry,
    )
    return Engine(
        config=config,
        pipeline=AnomalyPipeline(config),
        scheduler=scheduler,
        manager=manager,
        store=store,
    )


# =============================================================================
# JOB DEFINITIONS
# =============================================================================

def _abandon_half_opened(manager: DialogueSessionManager, session_id: str):
    try:
        manager.abandon(session_id, reason="start_failed")
    except HuntAnalyticsError as e:
        logger.warning(f"Could not abandon half-opened session {session_id}: {e}")


def _release_claim(scheduler: FollowUpScheduler, task_id: str):
    try:
        scheduler.release(task_id)
    except ExternalServiceError as e:
        logger.error(f"Could not release {task_id}, it stays claimed until its lease runs out: {e}")


def job_poll_followups(
    manager: DialogueSessionManager,
    scheduler: FollowUpScheduler,
    now: Optional[datetime] = None,
) -> dict:
    """
    Reopen a dialogue session for every due follow-up task.

    Run: Every poll interval
    Purpose: Ask whether an explanation still holds a week, a month,
    three months and a year after the anomaly was resolved

    A task is consumed only once its session is open and its question asked.
    If that fails the half-opened session is abandoned and the claim released
    so the next poll picks the task up. A task that cannot be consumed stays
    claimed until its lease runs out.
    """
    logger.info("Starting follow-up poll job")

    try:
        due = scheduler.poll_due(now)
    except ExternalServiceError as e:
        logger.error(f"Follow-up poll failed: {e}")
        return {"status": "error", "error": str(e)}

    opened = []
    failed = []
    for task in due:
        view = None
        try:
            view = manager.reopen(task)
            question = manager.start(view.session_id)
        except HuntAnalyticsError as e:
            logger.error(f"Could not reopen {task.task_id} for {task.anomaly_ref}: {e}")
            if view is not None:
                _abandon_half_opened(manager, view.session_id)
            _release_claim(scheduler, task.task_id)
            failed.append(task.task_id)
            continue

        try:
            scheduler.consume(task.task_id)
        except ExternalServiceError as e:
            logger.error(f"Follow-up {task.task_id} opened as {view.session_id} but not consumed: {e}")
        opened.append({
            "task_id": task.task_id,
            "kind": task.kind.value,
            "session_id": view.session_id,
            "question": question.text,
        })

    logger.info(f"Follow-up poll complete: {len(opened)} sessions opened, {len(failed)} failed")
    return {
        "status": "error" if failed and not opened else "success",
        "opened": opened,
        "failed": failed,
    }


def job_expire_sessions(
    manager: DialogueSessionManager,
    now: Optional[datetime] = None,
) -> dict:
    """
    Terminate sessions nobody has answered within the idle timeout.

    Run: Every poll interval
    Purpose: Keep abandoned conversations from piling up
    """
    if manager.config.idle_timeout is None:
        return {"status": "skipped", "reason": "idle timeout disabled"}

    expired = manager.expire_idle(now)
    return {"status": "success", "expired": [v.session_id for v in expired]}


def job_analyze(
    pipeline: AnomalyPipeline,
    sales_csv: str,
    exogenous_csv: Optional[str] = None,
    granularity: str = "day",
) -> dict:
    """
    Detect anomalies in a sales export and rank their likely causes.

    Run: On demand
    Purpose: Produce the hypotheses that dialogue sessions are opened with
    """
    logger.info(f"Starting analysis job ({sales_csv}, granularity={granularity})")

    try:
        points = load_sales_csv(sales_csv)
        exogenous = load_exogenous_csv(exogenous_csv) if exogenous_csv else []
        report = pipeline.analyze(points, exogenous, granularity)
    except (HuntAnalyticsError, OSError, KeyError, ValueError) as e:
        logger.error(f"Analysis failed: {e}")
        return {"status": "error", "error": str(e)}

    return {"status": "success", **report.to_dict()}


# =============================================================================
# CSV INPUT
# =============================================================================

def load_sales_csv(path: str) -> list[SalesPoint]:
    """Read ``date,product_id,quantity`` rows, sorted per product by date."""
    df = pd.read_csv(path, parse_dates=["date"])
    df = df.sort_values(["product_id", "date"])
    return [
        SalesPoint(date=row.date.date(), product_id=str(row.product_id), quantity=row.quantity)
        for row in df.itertuples(index=False)
    ]


def load_exogenous_csv(path: str) -> list[ExogenousSeries]:
    """Read a wide CSV: a ``date`` column plus one column per external series."""
    df = pd.read_csv(path, parse_dates=["date"]).set_index("date")
    series = []
    for column in df.columns:
        values = df[column].dropna()
        series.append(ExogenousSeries(
            series_id=str(column),
            points=tuple((ts.date(), float(v)) for ts, v in values.items()),
        ))
    return series


# =============================================================================
# ORCHESTRATOR
# =============================================================================

def run_poll_jobs(engine: Engine, now: Optional[datetime] = None) -> dict:
    """Run every per-interval job once."""
    results = {}

    results["followups"] = job_poll_followups(engine.manager, engine.scheduler, now)
    results["expire"] = job_expire_sessions(engine.manager, now)

    return results


def run_followup_loop(
    engine: Engine,
    iterations: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Poll every ``poll_interval_seconds`` until interrupted (or ``iterations`` runs)."""
    interval = engine.config.followup.poll_interval_seconds
    logger.info(f"Follow-up loop starting (interval={interval}s)")

    runs = 0
    try:
        while iterations is None or runs < iterations:
            run_poll_jobs(engine)
            runs += 1
            if iterations is None or runs < iterations:
                sleep(interval)
    except KeyboardInterrupt:
        logger.info("Follow-up loop interrupted")

    return runs


# =============================================================================
# CLI
# =============================================================================

if __name__ == "__main__":
    import argparse

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    parser = argparse.ArgumentParser(description="Hunt Scheduled Jobs")
    parser.add_argument(
        "job",
        choices=["poll", "expire", "loop", "analyze"],
        help="Job to run",
    )
    parser.add_argument("--sales", help="Sales CSV (date,product_id,quantity) for analyze")
    parser.add_argument("--exogenous", help="Wide CSV of external daily series for analyze")
    parser.add_argument("--granularity", default="day", choices=["day", "week", "month"])
    parser.add_argument("--iterations", type=int, default=None, help="Stop the loop after N polls")

    args = parser.parse_args()

    job_type = os.environ.get("JOB_TYPE", args.job)
    engine = build_engine()

    if job_type == "poll":
        result = job_poll_followups(engine.manager, engine.scheduler)
    elif job_type == "expire":
        result = job_expire_sessions(engine.manager)
    elif job_type == "loop":
        result = {"status": "success", "runs": run_followup_loop(engine, args.iterations)}
    elif job_type == "analyze":
        if not args.sales:
            parser.error("analyze needs --sales")
        result = job_analyze(engine.pipeline, args.sales, args.exogenous, args.granularity)
    else:
        result = {"status": "error", "error": f"Unknown job type: {job_type}"}

    print(f"\n{'='*60}")
    print(f"Job: {job_type}")
    print(json.dumps(result, indent=2, default=str))
    print(f"{'='*60}")

    # Exit with error code if job failed
    if result.get("status") == "error":
        sys.exit(1)
