from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one order sweep outside the Celery schedule.")
    parser.add_argument("name", choices=["commit_expiry", "commit_reminders", "tracking_sync"])
    parser.add_argument("--now", default="", help="ISO timestamp to evaluate deadlines against (UTC).")
    args = parser.parse_args()

    from bookmarket import create_app
    from bookmarket.segments.segment_admin_jobs import JOBS

    app = create_app()
    with app.app_context():
        now = datetime.fromisoformat(args.now) if args.now else None
        result = JOBS[args.name](now=now)

    print(json.dumps(result, indent=2, default=str))
    return 0 if int(result.get("errors") or 0) == 0 else 2


if __name__ == "__main__":
    raise SystemExit(main())
