from __future__ import annotations

import json
from datetime import datetime

from bookmarket.extensions import db
from bookmarket.models import JobRun


def record_job_run(
    *,
    job_name: str,
    ok: bool,
    started_at: datetime,
    processed: int = 0,
    failed: int = 0,
    summary: dict | None = None,
    error: str | None = None,
) -> JobRun | None:
    """Persist one sweep execution. Bookkeeping failures never fail the sweep."""
    duration_ms = max(0, int((datetime.utcnow() - started_at).total_seconds() * 1000))
    try:
        row = JobRun(
            job_name=(job_name or "unknown").strip()[:64],
            ran_at=datetime.utcnow(),
            ok=bool(ok),
            duration_ms=duration_ms,
            processed=int(processed or 0),
            failed=int(failed or 0),
            summary_json=json.dumps(summary or {}, default=str),
            error=(error or "")[:1000] or None,
        )
        db.session.add(row)
        db.session.commit()
        return row
    except Exception:
        db.session.rollback()
        return None


def last_runs(job_name: str, limit: int = 10) -> list[JobRun]:
    return (
        JobRun.query.filter_by(job_name=job_name)
        .order_by(JobRun.ran_at.desc(), JobRun.id.desc())
        .limit(int(limit))
        .all()
    )
