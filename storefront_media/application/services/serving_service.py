import logging
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from ..ports.image_repo import ImageRepository, ImageRecord
from ..ports.storage_repo import StorageRepository
from ...config import settings
from ...exceptions import ImageStorageError
from ...image_paths import ImageKind, OwnerKind, check_owner, is_managed, resolve, stored_basename
from ...media_utils import guess_media_type
from ...ownership import Mismatch, Ok, validate, validate_record


@dataclass(frozen=True)
class ImageHandle:
    path: Path
    rel_path: str
    media_type: str
    record: ImageRecord
    kind: ImageKind = ImageKind.ORIGINAL
    # Set when the bytes came from a pre-migration location
    legacy_source: Optional[str] = None


@dataclass(frozen=True)
class NotFound:
    reason: str


@dataclass(frozen=True)
class Forbidden:
    reason: str


ResolveOutcome = Union[ImageHandle, NotFound, Forbidden]


@dataclass
class ImageServingService:
    image_repo: ImageRepository
    storage_repo: StorageRepository
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    legacy_dirs: List[str] = field(default_factory=lambda: settings.legacy_image_dirs_list)

    def resolve_primary(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int] = None,
                        kind: ImageKind = ImageKind.ORIGINAL) -> ResolveOutcome:
        try:
            check_owner(owner_kind, store_id, product_id)
        except ImageStorageError as e:
            return NotFound(str(e))

        record = self.image_repo.get_primary(owner_kind, store_id, product_id)
        if not record:
            return NotFound("no primary image")

        kind = ImageKind(kind)
        if kind == ImageKind.THUMBNAIL:
            outcome = self._resolve_record(record, ImageKind.THUMBNAIL)
            if not isinstance(outcome, NotFound):
                return outcome
            self.logger.info(f"Thumbnail missing for image {record.id}, serving original")
        return self._resolve_record(record, ImageKind.ORIGINAL)

    def _resolve_record(self, record: ImageRecord, kind: ImageKind) -> ResolveOutcome:
        path, result = validate_record(record, kind)
        if isinstance(result, Mismatch):
            self.logger.warning(
                f"Ownership mismatch for image {record.id} ({record.owner_kind.value} store={record.store_id} "
                f"product={record.product_id}): {result.reason}; stored filename={record.filename!r}"
            )
            return Forbidden("ownership mismatch")
        if path is None:
            return NotFound(f"no {kind.value} recorded")

        if self.storage_repo.exists(path):
            return self._handle(record, path, kind)

        legacy = self._find_legacy(record, kind)
        if legacy:
            return legacy
        self.logger.info(f"File missing for image {record.id}: {path}")
        return NotFound("file missing")

    def _find_legacy(self, record: ImageRecord, kind: ImageKind) -> Optional[ImageHandle]:
        stored = record.filename if kind == ImageKind.ORIGINAL else record.thumbnail_filename
        basename = stored_basename(stored)
        try:
            target = resolve(record.store_id, record.product_id, basename, kind)
        except ImageStorageError:
            return None
        # A legacy file is only accepted for the canonical target of this owner
        if not isinstance(validate(record, target), Ok):
            return None

        for legacy_dir in self.legacy_dirs:
            candidate = posixpath.join(legacy_dir, basename) if legacy_dir else basename
            if is_managed(candidate):
                continue
            if self.storage_repo.exists(candidate):
                self.logger.warning(f"Serving image {record.id} from legacy location {candidate}; expected {target}")
                return self._handle(record, candidate, kind, legacy_source=candidate)
        return None

    def _handle(self, record: ImageRecord, rel_path: str, kind: ImageKind, legacy_source: Optional[str] = None) -> ImageHandle:
        return ImageHandle(
            path=self.storage_repo.absolute(rel_path),
            rel_path=rel_path,
            media_type=guess_media_type(rel_path),
            record=record,
            kind=kind,
            legacy_source=legacy_source,
        )
