"""
Integrity scan of the image tree against the image records.

The scan is read-only. It walks the upload root first and reads the records
second, so a file uploaded in between can show up as a potential orphan; the
reconciler re-checks every orphan before deleting it.

Managed files are matched to records by ``(kind, basename)`` when that pair is
unique across the whole managed tree, even for a single-store scan, and by
full relative path otherwise. Basename matching relies on generated filenames
being unique across tenants.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..ports.image_repo import ImageRepository, ImageRecord
from ..ports.storage_repo import StorageRepository
from ...exceptions import ImageStorageError, UnrecognizedPath
from ...image_paths import ImageKind, ParsedImagePath, owner_dir, parse, resolve, stored_basename
from ...ownership import Mismatch, validate_record


@dataclass(frozen=True)
class OrphanFile:
    rel_path: str
    store_id: int
    product_id: Optional[int]
    kind: ImageKind


@dataclass(frozen=True)
class DanglingRecord:
    record: ImageRecord
    expected_path: Optional[str]


@dataclass(frozen=True)
class CrossTenantMismatch:
    record: ImageRecord
    reason: str
    # Where the stored value points today, if it could be resolved at all
    current_path: Optional[str]
    current_thumbnail_path: Optional[str]
    # Where the record's declared owner says the file belongs
    expected_path: Optional[str]


@dataclass(frozen=True)
class MissingThumbnail:
    record: ImageRecord
    expected_path: Optional[str]


@dataclass
class IntegrityDiff:
    valid_system_images: List[str] = field(default_factory=list)
    potential_orphans: List[OrphanFile] = field(default_factory=list)
    dangling_records: List[DanglingRecord] = field(default_factory=list)
    cross_tenant_mismatches: List[CrossTenantMismatch] = field(default_factory=list)
    missing_thumbnails: List[MissingThumbnail] = field(default_factory=list)
    foreign_files: List[str] = field(default_factory=list)
    store_id: Optional[int] = None

    @property
    def is_clean(self) -> bool:
        return not (self.potential_orphans or self.dangling_records
                    or self.cross_tenant_mismatches or self.missing_thumbnails)

    def summary(self) -> Dict[str, int]:
        return {
            "valid_system_images": len(self.valid_system_images),
            "potential_orphans": len(self.potential_orphans),
            "dangling_records": len(self.dangling_records),
            "cross_tenant_mismatches": len(self.cross_tenant_mismatches),
            "missing_thumbnails": len(self.missing_thumbnails),
            "foreign_files": len(self.foreign_files),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "store_id": self.store_id,
            "summary": self.summary(),
            "valid_system_images": list(self.valid_system_images),
            "potential_orphans": [o.rel_path for o in self.potential_orphans],
            "dangling_records": [
                {"id": d.record.id, "filename": d.record.filename, "expected_path": d.expected_path}
                for d in self.dangling_records
            ],
            "cross_tenant_mismatches": [
                {"id": m.record.id, "filename": m.record.filename, "reason": m.reason,
                 "current_path": m.current_path, "expected_path": m.expected_path}
                for m in self.cross_tenant_mismatches
            ],
            "missing_thumbnails": [
                {"id": t.record.id, "expected_path": t.expected_path} for t in self.missing_thumbnails
            ],
            "foreign_files": list(self.foreign_files),
        }


@dataclass
class IntegrityScanner:
    image_repo: ImageRepository
    storage_repo: StorageRepository
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def scan(self, store_id: Optional[int] = None) -> IntegrityDiff:
        diff = IntegrityDiff(store_id=store_id)
        prefix = owner_dir(store_id) + "/" if store_id is not None else None

        # Every managed file counts towards basename uniqueness, in scope or not
        counts: Counter = Counter()
        managed: Dict[str, ParsedImagePath] = {}
        for rel_path in sorted(self.storage_repo.walk()):
            in_scope = not prefix or rel_path.startswith(prefix)
            try:
                parsed = parse(rel_path)
            except UnrecognizedPath:
                if in_scope:
                    diff.foreign_files.append(rel_path)
                continue
            counts[(parsed.kind, parsed.filename)] += 1
            if in_scope:
                managed[rel_path] = parsed

        referenced_paths: Set[str] = set()
        referenced_names: Dict[ImageKind, Set[str]] = {ImageKind.ORIGINAL: set(), ImageKind.THUMBNAIL: set()}

        for record in self.image_repo.list_all():
            self._classify_record(record, diff, store_id, referenced_paths, referenced_names)

        for rel_path, parsed in managed.items():
            if rel_path in referenced_paths:
                diff.valid_system_images.append(rel_path)
            elif counts[(parsed.kind, parsed.filename)] == 1 and parsed.filename in referenced_names[parsed.kind]:
                diff.valid_system_images.append(rel_path)
            else:
                diff.potential_orphans.append(
                    OrphanFile(rel_path=rel_path, store_id=parsed.store_id, product_id=parsed.product_id, kind=parsed.kind)
                )

        self.logger.info(f"Integrity scan{'' if store_id is None else f' of store {store_id}'}: {diff.summary()}")
        for mismatch in diff.cross_tenant_mismatches:
            self.logger.warning(f"Cross-tenant mismatch on image {mismatch.record.id}: {mismatch.reason}")
        return diff

    def _classify_record(self, record: ImageRecord, diff: IntegrityDiff, store_id: Optional[int],
                         referenced_paths: Set[str], referenced_names: Dict[ImageKind, Set[str]]) -> None:
        original_path, original_result = validate_record(record, ImageKind.ORIGINAL)
        thumbnail_path, thumbnail_result = validate_record(record, ImageKind.THUMBNAIL)

        for path in (original_path, thumbnail_path):
            if path:
                referenced_paths.add(path)
        if record.filename:
            referenced_names[ImageKind.ORIGINAL].add(stored_basename(record.filename))
        if record.thumbnail_filename:
            referenced_names[ImageKind.THUMBNAIL].add(stored_basename(record.thumbnail_filename))

        # Reported regardless of scope
        mismatch = next((r for r in (original_result, thumbnail_result) if isinstance(r, Mismatch)), None)
        if mismatch:
            diff.cross_tenant_mismatches.append(CrossTenantMismatch(
                record=record,
                reason=mismatch.reason,
                current_path=original_path,
                current_thumbnail_path=thumbnail_path,
                expected_path=self._expected(record, ImageKind.ORIGINAL),
            ))
            return

        if store_id is not None and record.store_id != store_id:
            return
        if not original_path or not self.storage_repo.exists(original_path):
            diff.dangling_records.append(DanglingRecord(record=record, expected_path=original_path))
            return
        if not thumbnail_path or not self.storage_repo.exists(thumbnail_path):
            diff.missing_thumbnails.append(
                MissingThumbnail(record=record, expected_path=self._expected(record, ImageKind.THUMBNAIL))
            )

    def _expected(self, record: ImageRecord, kind: ImageKind) -> Optional[str]:
        try:
            return resolve(record.store_id, record.product_id, stored_basename(record.filename), kind)
        except ImageStorageError:
            return None
