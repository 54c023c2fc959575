import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import List, Optional

from ..ports.image_repo import ImageRepository, ImageRecord
from ..ports.storage_repo import StorageRepository
from ...config import settings
from ...exceptions import ImageNotFound, InvalidImage, OwnershipMismatch, PartialWriteFailure
from ...image_paths import ImageKind, OwnerKind, check_owner, resolve_pair, stored_basename
from ...media_utils import create_thumbnail_from_bytes, sniff_image
from ...ownership import Ok, validate, validate_record


def generate_filename(extension: str) -> str:
    """Millisecond timestamp plus 64 random bits, e.g. ``1746574875959-9f2c4e1a7b3d5f60.jpg``."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}{extension}"


@dataclass
class ImageService:
    image_repo: ImageRepository
    storage_repo: StorageRepository
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    max_file_size: int = settings.MAX_FILE_SIZE
    allowed_types: List[str] = field(default_factory=lambda: list(settings.ALLOWED_IMAGE_TYPES))
    thumbnail_size: tuple = settings.THUMBNAIL_SIZE
    thumbnail_quality: int = settings.THUMBNAIL_QUALITY

    def store(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int], original_bytes: bytes,
              derive_thumbnail: bool = True, is_primary: Optional[bool] = None) -> ImageRecord:
        owner_kind = OwnerKind(owner_kind)
        check_owner(owner_kind, store_id, product_id)
        if len(original_bytes) > self.max_file_size:
            raise InvalidImage(f"File too large (max {self.max_file_size} bytes)")
        _fmt, extension, _media_type = sniff_image(original_bytes, self.allowed_types)

        filename = generate_filename(extension)
        original_path, thumbnail_path = resolve_pair(store_id, product_id, filename)

        # The declared owner must match the path we are about to write
        claim = ImageRecord(
            id=0, owner_kind=owner_kind, store_id=store_id, product_id=product_id,
            filename=filename, thumbnail_filename=None, is_primary=False, display_order=0,
        )
        result = validate(claim, original_path)
        if not isinstance(result, Ok):
            raise OwnershipMismatch(result.reason)

        self.storage_repo.write_atomic(original_path, original_bytes)
        self.logger.info(f"Stored original {original_path} ({len(original_bytes)} bytes)")

        thumbnail_filename = None
        if derive_thumbnail:
            try:
                self._write_thumbnail(original_path, thumbnail_path)
                thumbnail_filename = filename
            except PartialWriteFailure as e:
                self.logger.warning(f"Thumbnail not created for {original_path}: {e}")

        if is_primary is None:
            is_primary = self.image_repo.get_primary(owner_kind, store_id, product_id) is None

        try:
            record = self.image_repo.create(
                owner_kind, store_id, product_id, filename, thumbnail_filename, is_primary=is_primary,
            )
        except Exception:
            self.logger.error(f"Failed to persist image record for {original_path}; removing committed files")
            self.storage_repo.delete(original_path)
            if thumbnail_filename:
                self.storage_repo.delete(thumbnail_path)
            raise
        self.logger.info(f"Image record {record.id} created for {owner_kind.value} store={store_id} product={product_id}")
        return record

    def _write_thumbnail(self, original_path: str, thumbnail_path: str) -> None:
        # Derive from the committed original, never from the upload buffer
        try:
            committed = self.storage_repo.read_bytes(original_path)
        except OSError as e:
            raise PartialWriteFailure(f"cannot read committed original: {e}")
        thumb = create_thumbnail_from_bytes(committed, self.thumbnail_size, self.thumbnail_quality)
        if not thumb:
            raise PartialWriteFailure("thumbnail derivation failed")
        try:
            self.storage_repo.write_atomic(thumbnail_path, thumb)
        except OSError as e:
            raise PartialWriteFailure(f"cannot write thumbnail: {e}")

    def regenerate_thumbnail(self, record: ImageRecord) -> ImageRecord:
        """Rebuild a record's thumbnail from its canonical original."""
        basename = stored_basename(record.filename)
        original_path, thumbnail_path = resolve_pair(record.store_id, record.product_id, basename)
        if not self.storage_repo.exists(original_path):
            raise ImageNotFound(f"original missing for image {record.id}")
        self._write_thumbnail(original_path, thumbnail_path)
        if record.filename != basename or record.thumbnail_filename != basename:
            record = self.image_repo.update_filenames(record.id, basename, basename)
        return record

    def set_primary(self, image_id: int) -> ImageRecord:
        record = self.image_repo.set_primary(image_id)
        if not record:
            raise ImageNotFound(f"image {image_id} not found")
        return record

    def delete_image(self, image_id: int) -> None:
        record = self.image_repo.get(image_id)
        if not record:
            raise ImageNotFound(f"image {image_id} not found")
        self._delete_files(record)
        self.image_repo.delete(image_id)
        self.logger.info(f"Image {image_id} deleted")
        if record.is_primary:
            promoted = self.image_repo.promote_latest(record.owner_kind, record.store_id, record.product_id)
            if promoted:
                self.logger.info(f"Image {promoted.id} promoted to primary")

    def delete_owner_images(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int] = None) -> int:
        """Remove every image of a store or product, used when the owner itself is deleted."""
        check_owner(owner_kind, store_id, product_id)
        records = self.image_repo.list_for_owner(owner_kind, store_id, product_id)
        for record in records:
            self._delete_files(record)
            self.image_repo.delete(record.id)
        self.logger.info(f"Deleted {len(records)} images of {OwnerKind(owner_kind).value} store={store_id} product={product_id}")
        return len(records)

    def _delete_files(self, record: ImageRecord) -> None:
        for kind in (ImageKind.ORIGINAL, ImageKind.THUMBNAIL):
            path, result = validate_record(record, kind)
            # Only ever delete files that sit under the record's own owner
            if path and isinstance(result, Ok):
                self.storage_repo.delete(path)
