"""
Re-apply pending XP credits.

Credits stay pending when applying them failed right after the rewarding
transaction. Dry-run by default; use --live to apply.
"""
from __future__ import annotations

import argparse
import os
from typing import Dict, Optional

from fitquest.core.config import settings, validate_config
from fitquest.core.database import init_engine
from fitquest.core.logging import bind_operation_id, configure_logging
from fitquest.features.xp.ledger import pending_credits, reconcile_pending


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def run(*, dry_run: bool, limit: int, max_attempts: Optional[int] = None) -> Dict:
    if dry_run:
        pending = pending_credits(limit=limit)
        return {
            "dry_run": True,
            "pending": len(pending),
            "points": sum(credit.points for credit in pending),
        }
    with bind_operation_id():
        report = reconcile_pending(limit=limit, max_attempts=max_attempts)
    report["dry_run"] = False
    return report


def main() -> int:
    parser = argparse.ArgumentParser(description="Apply pending XP credits to user progress.")
    parser.add_argument("--live", dest="dry_run", action="store_false", help="Apply pending credits.")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Only count pending credits.")
    parser.add_argument("--limit", type=int, default=int(os.getenv("FITQUEST_RECONCILE_LIMIT", "100")))
    parser.add_argument("--max-attempts", type=int, default=None)
    parser.set_defaults(dry_run=_parse_bool(os.getenv("FITQUEST_RECONCILE_DRY_RUN", "1"), True))
    args = parser.parse_args()

    configure_logging(settings.ENV, settings.LOG_LEVEL)
    validate_config()
    init_engine()

    report = run(dry_run=args.dry_run, limit=args.limit, max_attempts=args.max_attempts)
    print(report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
