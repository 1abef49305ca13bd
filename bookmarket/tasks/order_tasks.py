from __future__ import annotations

import json
import os
import time
from datetime import datetime

from celery import shared_task
from flask import current_app


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload, default=str))


def _retry_countdown(retries: int) -> int:
    # Exponential backoff with cap.
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


def _sweep_limit(env_name: str, default: int) -> int:
    try:
        value = int((os.getenv(env_name) or str(default)).strip())
    except ValueError:
        value = default
    return max(1, min(value, 1000))


def _run_sweep(task, task_name: str, runner, *, trace_id: str = "", **kwargs) -> dict:
    started = time.perf_counter()
    try:
        result = runner(**kwargs)
        _task_log(
            task_name,
            status="ok" if bool(result.get("ok")) else "partial",
            started_at=started,
            trace_id=trace_id,
            processed=result.get("processed", 0),
            errors=result.get("errors", 0),
        )
        return result
    except Exception as exc:
        if int(task.request.retries or 0) < int(task.max_retries or 0):
            countdown = _retry_countdown(int(task.request.retries or 0))
            _task_log(
                task_name,
                status="retrying",
                started_at=started,
                trace_id=trace_id,
                detail=str(exc),
                countdown=countdown,
            )
            raise task.retry(exc=exc, countdown=countdown)
        _task_log(task_name, status="failed", started_at=started, trace_id=trace_id, detail=str(exc))
        raise


@shared_task(bind=True, name="bookmarket.tasks.order_tasks.run_commit_expiry", max_retries=3)
def run_commit_expiry_task(self, *, trace_id: str = ""):
    from bookmarket.jobs.commit_runner import run_commit_expiry

    return _run_sweep(
        self,
        "run_commit_expiry",
        run_commit_expiry,
        trace_id=trace_id,
        limit=_sweep_limit("COMMIT_EXPIRY_LIMIT", 500),
    )


@shared_task(bind=True, name="bookmarket.tasks.order_tasks.run_commit_reminders", max_retries=3)
def run_commit_reminders_task(self, *, trace_id: str = ""):
    from bookmarket.jobs.commit_runner import run_commit_reminders

    return _run_sweep(self, "run_commit_reminders", run_commit_reminders, trace_id=trace_id)


@shared_task(bind=True, name="bookmarket.tasks.order_tasks.run_tracking_sync", max_retries=3)
def run_tracking_sync_task(self, *, trace_id: str = ""):
    from bookmarket.jobs.tracking_runner import run_tracking_sync

    return _run_sweep(self, "run_tracking_sync", run_tracking_sync, trace_id=trace_id)
