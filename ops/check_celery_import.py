from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

EXPECTED_TASKS = (
    "bookmarket.tasks.order_tasks.run_commit_expiry",
    "bookmarket.tasks.order_tasks.run_commit_reminders",
    "bookmarket.tasks.order_tasks.run_tracking_sync",
)


def main() -> int:
    try:
        from celery_app import celery
        import bookmarket.tasks.order_tasks  # noqa: F401

        scheduled = {entry["task"] for entry in (celery.conf.beat_schedule or {}).values()}
        missing = [name for name in EXPECTED_TASKS if name not in celery.tasks or name not in scheduled]
        if missing:
            print(f"error: tasks not registered or not scheduled: {', '.join(missing)}", file=sys.stderr)
            return 1
        print(f"ok: celery_app:celery broker={celery.conf.broker_url} sweeps={len(scheduled)}")
        return 0
    except Exception as exc:
        print(f"error: failed to import celery_app:celery -> {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
