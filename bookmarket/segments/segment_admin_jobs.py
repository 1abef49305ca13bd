from __future__ import annotations

from flask import Blueprint

from bookmarket.errors import Forbidden, NotFound
from bookmarket.jobs.commit_runner import run_commit_expiry, run_commit_reminders
from bookmarket.jobs.tracking_runner import run_tracking_sync
from bookmarket.utils.auth import resolve_actor
from bookmarket.utils.job_runs import last_runs
from bookmarket.utils.responses import ok, unauthorized

admin_jobs_bp = Blueprint("admin_jobs_bp", __name__, url_prefix="/api/admin/jobs")

JOBS = {
    "commit_expiry": run_commit_expiry,
    "commit_reminders": run_commit_reminders,
    "tracking_sync": run_tracking_sync,
}


def _require_admin():
    actor = resolve_actor()
    if actor is None:
        return None
    if not actor.is_admin:
        raise Forbidden("Admin access required")
    return actor


@admin_jobs_bp.post("/<name>")
def run_job(name: str):
    if _require_admin() is None:
        return unauthorized()
    runner = JOBS.get(name)
    if runner is None:
        raise NotFound(f"Unknown job: {name}")
    return ok(runner())


@admin_jobs_bp.get("/<name>/runs")
def job_runs(name: str):
    if _require_admin() is None:
        return unauthorized()
    if name not in JOBS:
        raise NotFound(f"Unknown job: {name}")
    return ok({"items": [r.to_dict() for r in last_runs(name)]})
