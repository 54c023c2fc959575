"""
Applies the corrective actions implied by an ``IntegrityDiff``.

Items are processed one at a time in severity order (cross-tenant mismatches,
dangling records, missing thumbnails, orphans). Every item is re-checked
against the current state before it is changed, a failing item never stops
the batch, and cancellation takes effect between items.
"""
import json
import logging
import posixpath
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..ports.audit_logger import AuditLogger
from ..ports.image_repo import ImageRepository, ImageRecord
from ..ports.storage_repo import StorageRepository
from .image_service import ImageService
from .integrity_service import CrossTenantMismatch, DanglingRecord, IntegrityDiff, MissingThumbnail, OrphanFile
from ...config import settings
from ...exceptions import ImageStorageError, ReconcileActionFailure
from ...image_paths import ImageKind, is_managed, record_path, resolve, stored_basename
from ...ownership import Mismatch, validate_record


class ReconcilePolicy(str, Enum):
    DRY_RUN = "dry-run"
    APPLY = "apply"


class DanglingPolicy(str, Enum):
    RESTORE = "restore"
    DELETE = "delete"
    RESTORE_OR_DELETE = "restore-or-delete"


class ActionStatus(str, Enum):
    PLANNED = "planned"
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ActionOutcome:
    action: str
    target: str
    status: ActionStatus
    reason: Optional[str] = None
    before: Optional[str] = None
    after: Optional[str] = None
    record_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class ReconcileReport:
    policy: ReconcilePolicy
    outcomes: List[ActionOutcome] = field(default_factory=list)
    cancelled: bool = False
    backup_dir: Optional[str] = None

    def _with_status(self, status: ActionStatus) -> List[ActionOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def planned(self) -> List[ActionOutcome]:
        return self._with_status(ActionStatus.PLANNED)

    @property
    def succeeded(self) -> List[ActionOutcome]:
        return self._with_status(ActionStatus.SUCCEEDED)

    @property
    def skipped(self) -> List[ActionOutcome]:
        return self._with_status(ActionStatus.SKIPPED)

    @property
    def failed(self) -> List[ActionOutcome]:
        return self._with_status(ActionStatus.FAILED)

    def counts(self) -> Dict[str, int]:
        return {status.value: len(self._with_status(status)) for status in ActionStatus}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy": self.policy.value,
            "cancelled": self.cancelled,
            "backup_dir": self.backup_dir,
            "counts": self.counts(),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class _Skip(Exception):
    pass


@dataclass
class _Run:
    backup: bool
    backup_root: Path
    run_dir: Optional[Path] = None

    def backup_dir(self) -> Path:
        if self.run_dir is None:
            stamp = datetime.utcnow().strftime("%Y%m%dT%H%M%S%fZ")
            self.run_dir = self.backup_root / f"reconcile-{stamp}"
            self.run_dir.mkdir(parents=True, exist_ok=True)
        return self.run_dir


@dataclass
class _Item:
    action: str
    target: str
    run: Callable[[], ActionOutcome]
    before: Optional[str] = None
    after: Optional[str] = None
    record_id: Optional[int] = None


@dataclass
class Reconciler:
    image_repo: ImageRepository
    storage_repo: StorageRepository
    image_service: ImageService
    audit_logger: AuditLogger
    backup_root: Path = field(default_factory=lambda: Path(settings.BACKUP_DIR))
    legacy_dirs: List[str] = field(default_factory=lambda: settings.legacy_image_dirs_list)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def reconcile(self, diff: IntegrityDiff, policy: ReconcilePolicy = ReconcilePolicy.DRY_RUN, backup: bool = True,
                  dangling_policy: DanglingPolicy = DanglingPolicy.RESTORE_OR_DELETE,
                  cancel: Optional[threading.Event] = None) -> ReconcileReport:
        policy = ReconcilePolicy(policy)
        dangling_policy = DanglingPolicy(dangling_policy)
        report = ReconcileReport(policy=policy)
        run = _Run(backup=backup, backup_root=self.backup_root)

        items = self._plan(diff, dangling_policy, run)
        if policy == ReconcilePolicy.DRY_RUN:
            for item in items:
                report.outcomes.append(ActionOutcome(
                    action=item.action, target=item.target, status=ActionStatus.PLANNED,
                    before=item.before, after=item.after, record_id=item.record_id,
                ))
            self.logger.info(f"Dry run: {len(items)} actions planned")
            return report

        for item in items:
            if cancel is not None and cancel.is_set():
                report.cancelled = True
                self.logger.warning(f"Reconcile cancelled after {len(report.outcomes)} of {len(items)} actions")
                break
            report.outcomes.append(self._execute(item))

        if run.run_dir is not None:
            report.backup_dir = str(run.run_dir)
        self.logger.info(f"Reconcile finished: {report.counts()}")
        return report

    def _plan(self, diff: IntegrityDiff, dangling_policy: DanglingPolicy, run: _Run) -> List[_Item]:
        items: List[_Item] = []
        for m in diff.cross_tenant_mismatches:
            items.append(_Item(
                action="move-to-owner", target=f"image:{m.record.id}", record_id=m.record.id,
                before=m.current_path, after=m.expected_path,
                run=lambda m=m: self._fix_mismatch(m),
            ))
        for d in diff.dangling_records:
            items.append(_Item(
                action=f"{dangling_policy.value}-record", target=f"image:{d.record.id}", record_id=d.record.id,
                before=d.expected_path,
                run=lambda d=d: self._fix_dangling(run, d, dangling_policy),
            ))
        for t in diff.missing_thumbnails:
            items.append(_Item(
                action="regenerate-thumbnail", target=f"image:{t.record.id}", record_id=t.record.id,
                after=t.expected_path,
                run=lambda t=t: self._fix_thumbnail(t),
            ))
        for o in diff.potential_orphans:
            items.append(_Item(
                action="delete-orphan", target=o.rel_path, before=o.rel_path,
                after=("backup" if run.backup else None),
                run=lambda o=o: self._delete_orphan(run, o),
            ))
        return items

    def _execute(self, item: _Item) -> ActionOutcome:
        try:
            return item.run()
        except _Skip as e:
            outcome = ActionOutcome(item.action, item.target, ActionStatus.SKIPPED, reason=str(e), record_id=item.record_id)
        except (ReconcileActionFailure, ImageStorageError, OSError, SQLAlchemyError) as e:
            outcome = ActionOutcome(item.action, item.target, ActionStatus.FAILED, reason=str(e), record_id=item.record_id)
            self.audit_logger.log(item.action, success=False, before=item.before, record_id=item.record_id,
                                  details={"reason": str(e)})
        self.logger.info(f"{item.action} {item.target}: {outcome.status.value} ({outcome.reason})")
        return outcome

    # -- backups -----------------------------------------------------------

    def _backup_file(self, run: _Run, rel_path: str) -> Optional[str]:
        if not run.backup:
            return None
        dest = run.backup_dir() / Path(*rel_path.split("/"))
        self.storage_repo.export_file(rel_path, dest)
        return str(dest)

    def _backup_record(self, run: _Run, record: ImageRecord) -> Optional[str]:
        if not run.backup:
            return None
        dest = run.backup_dir() / "records.jsonl"
        with open(dest, "a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(record), default=str) + "\n")
        return str(dest)

    def _find_restore_source(self, rel_path: str) -> Optional[Path]:
        if self.backup_root.is_dir():
            for run_dir in sorted(self.backup_root.glob("reconcile-*"), reverse=True):
                candidate = run_dir / Path(*rel_path.split("/"))
                if candidate.is_file():
                    return candidate
        basename = posixpath.basename(rel_path)
        for legacy_dir in self.legacy_dirs:
            candidate = posixpath.join(legacy_dir, basename) if legacy_dir else basename
            if not is_managed(candidate) and self.storage_repo.exists(candidate):
                return self.storage_repo.absolute(candidate)
        return None

    # -- actions -----------------------------------------------------------

    def _current(self, record: ImageRecord) -> ImageRecord:
        current = self.image_repo.get(record.id)
        if current is None:
            raise _Skip("record no longer exists")
        return current

    def _delete_orphan(self, run: _Run, orphan: OrphanFile) -> ActionOutcome:
        rel_path = orphan.rel_path
        if not self.storage_repo.exists(rel_path):
            raise _Skip("file no longer exists")
        for record in self.image_repo.find_by_basename(posixpath.basename(rel_path)):
            same_owner = (record.store_id, record.product_id) == (orphan.store_id, orphan.product_id)
            try:
                points_here = record_path(record, orphan.kind) == rel_path
            except ImageStorageError:
                points_here = False
            if same_owner or points_here:
                raise _Skip(f"file is now referenced by image {record.id}")

        backup_path = self._backup_file(run, rel_path)
        self.storage_repo.delete(rel_path)
        self.audit_logger.log("delete-orphan", before=rel_path, after=backup_path,
                              details={"backup": backup_path is not None})
        return ActionOutcome("delete-orphan", rel_path, ActionStatus.SUCCEEDED, before=rel_path, after=backup_path)

    def _fix_dangling(self, run: _Run, dangling: DanglingRecord, dangling_policy: DanglingPolicy) -> ActionOutcome:
        record = self._current(dangling.record)
        action = f"{dangling_policy.value}-record"
        basename = stored_basename(record.filename)
        expected = resolve(record.store_id, record.product_id, basename, ImageKind.ORIGINAL)
        if self.storage_repo.exists(expected):
            raise _Skip("file is present")

        if dangling_policy in (DanglingPolicy.RESTORE, DanglingPolicy.RESTORE_OR_DELETE):
            source = self._find_restore_source(expected)
            if source is not None:
                self.storage_repo.import_file(source, expected)
                if record.filename != basename:
                    self.image_repo.update_filenames(record.id, basename, record.thumbnail_filename and stored_basename(record.thumbnail_filename))
                self.audit_logger.log("restore-record-file", before=str(source), after=expected, record_id=record.id)
                return ActionOutcome(action, f"image:{record.id}", ActionStatus.SUCCEEDED,
                                     reason="restored", before=str(source), after=expected, record_id=record.id)
            if dangling_policy == DanglingPolicy.RESTORE:
                raise ReconcileActionFailure(f"no backup or legacy copy of {expected}")

        backup_path = self._backup_record(run, record)
        thumbnail_path, result = validate_record(record, ImageKind.THUMBNAIL)
        if thumbnail_path and not isinstance(result, Mismatch) and self.storage_repo.exists(thumbnail_path):
            self._backup_file(run, thumbnail_path)
            self.storage_repo.delete(thumbnail_path)
        self.image_repo.delete(record.id)
        details = {"filename": record.filename, "backup": backup_path is not None}
        if record.is_primary:
            promoted = self.image_repo.promote_latest(record.owner_kind, record.store_id, record.product_id)
            details["promoted"] = promoted.id if promoted else None
        self.audit_logger.log("delete-record", before=expected, after=backup_path, record_id=record.id,
                              details=details)
        return ActionOutcome(action, f"image:{record.id}", ActionStatus.SUCCEEDED,
                             reason="record deleted", before=expected, after=backup_path, record_id=record.id)

    def _fix_mismatch(self, mismatch: CrossTenantMismatch) -> ActionOutcome:
        record = self._current(mismatch.record)
        original_path, original_result = validate_record(record, ImageKind.ORIGINAL)
        thumbnail_path, thumbnail_result = validate_record(record, ImageKind.THUMBNAIL)
        if not isinstance(original_result, Mismatch) and not isinstance(thumbnail_result, Mismatch):
            raise _Skip("record is already consistent")

        basename = stored_basename(record.filename)
        target = resolve(record.store_id, record.product_id, basename, ImageKind.ORIGINAL)
        self._move_into_place(record, original_path, target)

        thumbnail_name = stored_basename(record.thumbnail_filename)
        if thumbnail_name:
            thumbnail_target = resolve(record.store_id, record.product_id, thumbnail_name, ImageKind.THUMBNAIL)
            try:
                self._move_into_place(record, thumbnail_path, thumbnail_target)
            except ReconcileActionFailure as e:
                # Thumbnails are regenerable; the next scan reports it as missing
                self.logger.warning(f"Thumbnail of image {record.id} not moved: {e}")
            if not self.storage_repo.exists(thumbnail_target):
                thumbnail_name = None

        updated = self.image_repo.update_filenames(record.id, basename, thumbnail_name)
        if updated is None:
            raise _Skip("record no longer exists")
        for kind in (ImageKind.ORIGINAL, ImageKind.THUMBNAIL):
            _path, result = validate_record(updated, kind)
            if isinstance(result, Mismatch):
                raise ReconcileActionFailure(f"revalidation failed: {result.reason}")

        self.audit_logger.log("move-to-owner", before=original_path, after=target, record_id=record.id,
                              details={"reason": mismatch.reason})
        return ActionOutcome("move-to-owner", f"image:{record.id}", ActionStatus.SUCCEEDED,
                             before=original_path, after=target, record_id=record.id)

    def _move_into_place(self, record: ImageRecord, source: Optional[str], target: str) -> None:
        if self.storage_repo.exists(target):
            return
        if not source or source == target or not self.storage_repo.exists(source):
            raise ReconcileActionFailure(f"no file to move into {target}")
        # Never take a file another record legitimately points at
        for other in self.image_repo.find_by_basename(posixpath.basename(source)):
            if other.id == record.id:
                continue
            for kind in (ImageKind.ORIGINAL, ImageKind.THUMBNAIL):
                other_path, result = validate_record(other, kind)
                if other_path == source and not isinstance(result, Mismatch):
                    raise ReconcileActionFailure(f"{source} belongs to image {other.id}")
        self.storage_repo.move_atomic(source, target)

    def _fix_thumbnail(self, missing: MissingThumbnail) -> ActionOutcome:
        record = self._current(missing.record)
        thumbnail_path, result = validate_record(record, ImageKind.THUMBNAIL)
        if thumbnail_path and not isinstance(result, Mismatch) and self.storage_repo.exists(thumbnail_path):
            raise _Skip("thumbnail is present")
        updated = self.image_service.regenerate_thumbnail(record)
        if updated is None:
            raise _Skip("record no longer exists")
        after = resolve(updated.store_id, updated.product_id, updated.thumbnail_filename, ImageKind.THUMBNAIL)
        self.audit_logger.log("regenerate-thumbnail", after=after, record_id=record.id)
        return ActionOutcome("regenerate-thumbnail", f"image:{record.id}", ActionStatus.SUCCEEDED,
                             after=after, record_id=record.id)
