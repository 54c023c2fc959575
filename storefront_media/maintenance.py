"""
Storage maintenance commands.

    storefront-media scan [--store-id N] [--json]
    storefront-media reconcile [--apply] [--no-backup --yes] [--dangling POLICY] [--store-id N]

``reconcile`` is a dry run unless ``--apply`` is given. Ctrl-C during an
applied run finishes the current item and stops.
"""
import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from sqlmodel import Session

from .config import settings
from .database import create_db_and_tables, engine
from .application.services.image_service import ImageService
from .application.services.integrity_service import IntegrityDiff, IntegrityScanner
from .application.services.reconcile_service import DanglingPolicy, ReconcilePolicy, ReconcileReport, Reconciler
from .infrastructure.audit.std_logger import StdAuditLogger
from .infrastructure.persistence.sqlalchemy.repositories.image_repository_sql import SqlImageRepository
from .infrastructure.storage.local_storage import LocalStorageRepository

logger = logging.getLogger("storefront_media.maintenance")


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer")
    if number < 1:
        raise argparse.ArgumentTypeError(f"store ids start at 1, got {number}")
    return number


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="storefront-media", description="Scan and repair the image store.")
    parser.add_argument("--upload-dir", default=settings.UPLOAD_DIR, help="Image root (default: %(default)s)")
    parser.add_argument("--backup-dir", default=settings.BACKUP_DIR, help="Backup root (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Report drift between records and files (read-only)")
    scan.add_argument("--store-id", type=positive_int, default=None, help="Limit the scan to one store")
    scan.add_argument("--json", action="store_true", help="Print the full report as JSON")

    reconcile = sub.add_parser("reconcile", help="Scan, then fix what the scan found")
    reconcile.add_argument("--store-id", type=positive_int, default=None, help="Limit the run to one store")
    reconcile.add_argument("--apply", action="store_true", help="Make changes (default is a dry run)")
    reconcile.add_argument("--no-backup", action="store_true", help="Delete without keeping a backup copy")
    reconcile.add_argument("--yes", action="store_true", help="Confirm --no-backup")
    reconcile.add_argument(
        "--dangling",
        choices=[p.value for p in DanglingPolicy],
        default=DanglingPolicy.RESTORE_OR_DELETE.value,
        help="How to handle records whose file is missing (default: %(default)s)",
    )
    reconcile.add_argument("--json", action="store_true", help="Print the full report as JSON")
    return parser.parse_args(argv)


def _print_scan(diff: IntegrityDiff, as_json: bool) -> None:
    if as_json:
        print(json.dumps(diff.to_dict(), indent=2))
        return
    scope = "all stores" if diff.store_id is None else f"store {diff.store_id}"
    print(f"Integrity scan of {scope}")
    for key, count in diff.summary().items():
        print(f"  {key:<24} {count}")
    for orphan in diff.potential_orphans:
        print(f"  orphan    {orphan.rel_path}")
    for dangling in diff.dangling_records:
        print(f"  dangling  image {dangling.record.id} -> {dangling.expected_path}")
    for mismatch in diff.cross_tenant_mismatches:
        print(f"  MISMATCH  image {mismatch.record.id}: {mismatch.reason}")
    for missing in diff.missing_thumbnails:
        print(f"  no thumb  image {missing.record.id}")


def _print_report(report: ReconcileReport, as_json: bool) -> None:
    if as_json:
        print(json.dumps(report.to_dict(), indent=2))
        return
    print(f"Reconcile ({report.policy.value}){' CANCELLED' if report.cancelled else ''}")
    for outcome in report.outcomes:
        line = f"  {outcome.status.value:<9} {outcome.action:<22} {outcome.target}"
        if outcome.reason:
            line += f" ({outcome.reason})"
        print(line)
    print(f"  totals: {report.counts()}")
    if report.backup_dir:
        print(f"  backups in {report.backup_dir}")


def _install_interrupt(cancel: threading.Event):
    def _handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupt received; stopping after the current item (press again to abort)")
        cancel.set()
    return signal.signal(signal.SIGINT, _handler)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.LOG_LEVEL),
        format=settings.LOG_FORMAT,
    )

    if args.command == "reconcile" and args.no_backup and not args.yes:
        print("--no-backup deletes files permanently; pass --yes to confirm", file=sys.stderr)
        return 2

    create_db_and_tables()
    storage = LocalStorageRepository(args.upload_dir)
    with Session(engine) as session:
        image_repo = SqlImageRepository(session)
        diff = IntegrityScanner(image_repo, storage).scan(store_id=args.store_id)

        if args.command == "scan":
            _print_scan(diff, args.json)
            return 0 if diff.is_clean else 1

        reconciler = Reconciler(
            image_repo=image_repo,
            storage_repo=storage,
            image_service=ImageService(image_repo, storage),
            audit_logger=StdAuditLogger(),
            backup_root=Path(args.backup_dir),
        )
        cancel = threading.Event()
        previous = _install_interrupt(cancel)
        try:
            report = reconciler.reconcile(
                diff,
                policy=ReconcilePolicy.APPLY if args.apply else ReconcilePolicy.DRY_RUN,
                backup=not args.no_backup,
                dangling_policy=DanglingPolicy(args.dangling),
                cancel=cancel,
            )
        finally:
            signal.signal(signal.SIGINT, previous)

    _print_report(report, args.json)
    if report.cancelled:
        return 130
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
