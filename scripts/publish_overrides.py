#!/usr/bin/env python3
"""
Publish, roll back or reset finding overrides from the command line.

Safe by default (dry-run): the batch runs inside a transaction that is rolled
back at the end. Use --apply to persist changes.

Examples:
    python scripts/publish_overrides.py publish --family dimensions --version 2026-Q4
    python scripts/publish_overrides.py rollback --family messages --lang zh-CN --version 2026-Q4 --apply
    python scripts/publish_overrides.py reset --family messages --lang zh-CN --finding SMOKE_ALARM_EXPIRED --apply
"""

import argparse
from typing import List, Optional


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Publish, roll back or reset finding overrides.")
    parser.add_argument("action", choices=["publish", "rollback", "reset"])
    parser.add_argument("--family", choices=["dimensions", "messages"], default="dimensions")
    parser.add_argument("--version", default=None, help="Publish label (rollback: required)")
    parser.add_argument("--finding", action="append", dest="finding_ids", default=[],
                        help="Restrict to a finding id (repeatable; reset: required)")
    parser.add_argument("--lang", default=None, help="Message language (default: DEFAULT_LANG)")
    parser.add_argument("--actor", default="cli")
    parser.add_argument("--apply", action="store_true", help="Persist changes (default: dry-run)")
    return parser


def _reset(db, family: str, finding_ids: List[str], lang: Optional[str]):
    """Reset each finding's published override; returns (done, skipped)."""
    from findings_admin.config import get_default_lang
    from findings_admin.errors import OverrideValidationError
    from findings_admin.ledger import dimension_ledger, message_ledger

    if not finding_ids:
        raise OverrideValidationError("reset needs at least one --finding")

    ledger = dimension_ledger if family == "dimensions" else message_ledger
    lang = (lang or "").strip() or get_default_lang()
    done = sum(1 for fid in finding_ids if ledger.reset_active(db, fid, lang=lang))
    return done, len(finding_ids) - done


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    from findings_admin.db.session import get_db_session, init_db
    from findings_admin.errors import FindingsAdminError
    from findings_admin.publishing import (
        publish_dimensions,
        publish_messages,
        rollback_dimensions,
        rollback_messages,
    )

    init_db()
    mode = "APPLY" if args.apply else "DRY-RUN"

    try:
        with get_db_session() as db:
            result = None
            if args.action == "reset":
                done, skipped = _reset(db, args.family, args.finding_ids, args.lang)
            elif args.action == "publish" and args.family == "dimensions":
                result = publish_dimensions(db, args.finding_ids, args.version, args.actor)
            elif args.action == "publish":
                result = publish_messages(db, args.finding_ids, args.lang, args.version, args.actor)
            elif args.family == "dimensions":
                result = rollback_dimensions(db, args.version, args.finding_ids, args.actor)
            else:
                result = rollback_messages(db, args.version, args.finding_ids, args.lang, args.actor)

            if not args.apply:
                db.rollback()
    except FindingsAdminError as e:
        print(f"error: {e}")
        return 2

    if result is None:
        print(f"[{mode}] reset {args.family}: {done} done, {skipped} skipped")
        return 0

    done = result.published if args.action == "publish" else result.rolled_back
    print(f"[{mode}] {args.action} {args.family} {result.version}: {done} done, {result.skipped} skipped")
    for error in result.errors:
        print(f"[{mode}]   {error}")
    return 1 if result.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
