import io
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

import pytest
from PIL import Image
from sqlalchemy.exc import OperationalError

from storefront_media.application.ports.image_repo import ImageRecord
from storefront_media.image_paths import OwnerKind, stored_basename
from storefront_media.infrastructure.storage.local_storage import LocalStorageRepository


class FakeImageRepo:
    def __init__(self):
        self.rows: Dict[int, ImageRecord] = {}
        self._id = 1
        self.fail_create = False
        self.fail_delete = False

    def _owned(self, owner_kind, store_id, product_id) -> List[ImageRecord]:
        return [
            r for r in self.rows.values()
            if r.owner_kind == OwnerKind(owner_kind) and r.store_id == store_id and r.product_id == product_id
        ]

    def create(self, owner_kind, store_id, product_id, filename, thumbnail_filename, is_primary=False, display_order=None):
        if self.fail_create:
            raise RuntimeError("database unavailable")
        if is_primary:
            for r in self._owned(owner_kind, store_id, product_id):
                r.is_primary = False
        if display_order is None:
            display_order = len(self._owned(owner_kind, store_id, product_id))
        rec = ImageRecord(self._id, OwnerKind(owner_kind), store_id, product_id, filename, thumbnail_filename,
                          is_primary, display_order, datetime.utcnow())
        self.rows[rec.id] = rec
        self._id += 1
        return replace(rec)

    def get(self, image_id: int) -> Optional[ImageRecord]:
        rec = self.rows.get(image_id)
        return replace(rec) if rec else None

    def get_primary(self, owner_kind, store_id, product_id):
        primaries = [r for r in self._owned(owner_kind, store_id, product_id) if r.is_primary]
        return replace(primaries[-1]) if primaries else None

    def list_for_owner(self, owner_kind, store_id, product_id):
        return [replace(r) for r in sorted(self._owned(owner_kind, store_id, product_id), key=lambda r: (r.display_order, r.id))]

    def list_all(self):
        return [replace(r) for r in sorted(self.rows.values(), key=lambda r: r.id)]

    def find_by_basename(self, basename: str):
        return [
            replace(r) for r in self.list_all()
            if basename in (stored_basename(r.filename), stored_basename(r.thumbnail_filename))
        ]

    def set_primary(self, image_id: int):
        rec = self.rows.get(image_id)
        if not rec:
            return None
        for r in self._owned(rec.owner_kind, rec.store_id, rec.product_id):
            r.is_primary = r.id == image_id
        return replace(rec)

    def update_filenames(self, image_id: int, filename: str, thumbnail_filename: Optional[str]):
        rec = self.rows.get(image_id)
        if not rec:
            return None
        rec.filename = filename
        rec.thumbnail_filename = thumbnail_filename
        return replace(rec)

    def promote_latest(self, owner_kind, store_id, product_id):
        owned = self._owned(owner_kind, store_id, product_id)
        if not owned:
            return None
        return self.set_primary(max(r.id for r in owned))

    def delete(self, image_id: int) -> bool:
        if self.fail_delete:
            raise OperationalError("DELETE FROM image_assets", {}, Exception("database unavailable"))
        return self.rows.pop(image_id, None) is not None


class FakeAudit:
    def __init__(self):
        self.entries = []

    def log(self, action, success=True, before=None, after=None, record_id=None, details=None):
        self.entries.append({"action": action, "success": success, "before": before, "after": after,
                             "record_id": record_id, "details": details or {}})


def make_image_bytes(fmt: str = "JPEG", size=(640, 480), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def image_repo():
    return FakeImageRepo()


@pytest.fixture
def audit():
    return FakeAudit()


@pytest.fixture
def storage(tmp_path):
    return LocalStorageRepository(str(tmp_path / "uploads"))


@pytest.fixture
def jpeg_bytes():
    return make_image_bytes("JPEG")


@pytest.fixture
def png_bytes():
    return make_image_bytes("PNG", size=(400, 400), color=(10, 120, 240))
