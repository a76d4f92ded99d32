"""
Phrames Admin CLI — Batch jobs for cron and operators.

Usage:
    phrames-admin sweep
    phrames-admin fix-stuck --dry-run
    phrames-admin fix-campaign <campaign_id> --order-id <order_id>
    phrames-admin cleanup-orphans
"""
import argparse
import json
import logging
import sys
from dataclasses import asdict

from phrames.config import get_settings
from phrames.database import SessionLocal, init_db
from phrames.errors import PhramesError
from phrames.logging_config import configure_logging
from phrames.schemas.audit_events import ManualCronTrigger
from phrames.services.audit_service import AuditService, SYSTEM_ACTOR
from phrames.services.expiry_sweep import ExpirySweep
from phrames.services.reconciliation import ReconciliationEngine

logger = logging.getLogger("phrames.cli")


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_sweep(db, args) -> int:
    settings = get_settings()
    sweep = ExpirySweep(chunk_size=settings.EXPIRY_CHUNK_SIZE, batch_limit=settings.STORE_BATCH_LIMIT)
    result = sweep.run(db, manual=args.manual)
    if args.manual:
        AuditService.log_best_effort(
            db,
            ManualCronTrigger(job="campaign-expiry", batch_id=result.batch_id, processed=result.processed),
            actor_id=args.actor,
            description=f"Manually triggered campaign-expiry ({result.processed} expired)",
        )
    _print(asdict(result))
    return 0


def cmd_fix_stuck(db, args) -> int:
    engine = ReconciliationEngine(batch_limit=get_settings().STORE_BATCH_LIMIT)
    summary = engine.fix_stuck_campaigns(db, actor_id=args.actor, dry_run=args.dry_run)
    _print({
        "found": summary.found,
        "fixed": summary.fixed,
        "skipped": summary.skipped,
        "dry_run": summary.dry_run,
        "results": [r.to_dict() for r in summary.results],
    })
    return 0


def cmd_fix_campaign(db, args) -> int:
    engine = ReconciliationEngine(batch_limit=get_settings().STORE_BATCH_LIMIT)
    result = engine.fix_single(db, args.campaign_id, actor_id=args.actor, order_id=args.order_id)
    _print(result.to_dict())
    return 0 if result.fixed else 1


def cmd_cleanup_orphans(db, args) -> int:
    engine = ReconciliationEngine(batch_limit=get_settings().STORE_BATCH_LIMIT)
    result = engine.cleanup_orphaned(db, actor_id=args.actor, dry_run=args.dry_run)
    _print(asdict(result))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="phrames-admin", description="Phrames campaign maintenance jobs")
    parser.add_argument("--actor", default=SYSTEM_ACTOR, help="Actor id recorded in the audit trail (default: system)")
    sub = parser.add_subparsers(dest="command", required=True)

    sweep = sub.add_parser("sweep", help="Deactivate campaigns whose expiry has passed")
    sweep.add_argument("--manual", action="store_true", help="Tag the batch as manually triggered")
    sweep.set_defaults(func=cmd_sweep)

    fix = sub.add_parser("fix-stuck", help="Activate campaigns with a successful payment or unused free grant")
    fix.add_argument("--dry-run", action="store_true", help="List what would be fixed without writing")
    fix.set_defaults(func=cmd_fix_stuck)

    single = sub.add_parser("fix-campaign", help="Repair one campaign")
    single.add_argument("campaign_id")
    single.add_argument("--order-id", default=None, help="Payment order that should drive the repair")
    single.set_defaults(func=cmd_fix_campaign)

    cleanup = sub.add_parser("cleanup-orphans", help="Remove payments and expiry logs of deleted campaigns")
    cleanup.add_argument("--dry-run", action="store_true", help="Count what would be removed without writing")
    cleanup.set_defaults(func=cmd_cleanup_orphans)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(get_settings())
    init_db()

    db = SessionLocal()
    try:
        return args.func(db, args)
    except PhramesError as exc:
        logger.error("%s: %s", type(exc).__name__, exc.message)
        print(f"error: {exc.client_message()}", file=sys.stderr)
        return 2
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
