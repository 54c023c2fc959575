from typing import Iterable, List, Optional
from sqlalchemy import func, or_
from sqlmodel import Session, select

from .....db.models import ImageAsset
from .....image_paths import OwnerKind, stored_basename
from .....application.ports.image_repo import ImageRepository, ImageRecord


class SqlImageRepository(ImageRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, a: ImageAsset) -> ImageRecord:
        return ImageRecord(
            id=a.id,
            owner_kind=OwnerKind(a.owner_kind),
            store_id=a.store_id,
            product_id=a.product_id,
            filename=a.filename,
            thumbnail_filename=a.thumbnail_filename,
            is_primary=bool(a.is_primary),
            display_order=a.display_order or 0,
            created_at=a.created_at,
        )

    def _owner_filter(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int]):
        product_cond = ImageAsset.product_id.is_(None) if product_id is None else ImageAsset.product_id == product_id
        return (
            ImageAsset.owner_kind == OwnerKind(owner_kind).value,
            ImageAsset.store_id == store_id,
            product_cond,
        )

    def _owner_query(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int]):
        return select(ImageAsset).where(*self._owner_filter(owner_kind, store_id, product_id))

    def _clear_primary(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int], keep_id: Optional[int] = None) -> None:
        rows = self.session.exec(
            self._owner_query(owner_kind, store_id, product_id).where(ImageAsset.is_primary == True)  # noqa: E712
        ).all()
        for row in rows:
            if row.id != keep_id:
                row.is_primary = False
                self.session.add(row)

    def create(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int], filename: str,
               thumbnail_filename: Optional[str], is_primary: bool = False, display_order: Optional[int] = None) -> ImageRecord:
        if display_order is None:
            current = self.session.exec(
                select(func.max(ImageAsset.display_order))
                .where(*self._owner_filter(owner_kind, store_id, product_id))
            ).first()
            display_order = 0 if current is None else current + 1
        try:
            if is_primary:
                self._clear_primary(owner_kind, store_id, product_id)
            asset = ImageAsset(
                owner_kind=OwnerKind(owner_kind).value,
                store_id=store_id,
                product_id=product_id,
                filename=filename,
                thumbnail_filename=thumbnail_filename,
                is_primary=is_primary,
                display_order=display_order,
            )
            self.session.add(asset)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(asset)
        return self._to_dto(asset)

    def get(self, image_id: int) -> Optional[ImageRecord]:
        a = self.session.get(ImageAsset, image_id)
        return self._to_dto(a) if a else None

    def get_primary(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int]) -> Optional[ImageRecord]:
        a = self.session.exec(
            self._owner_query(owner_kind, store_id, product_id)
            .where(ImageAsset.is_primary == True)  # noqa: E712
            .order_by(ImageAsset.id.desc())
        ).first()
        return self._to_dto(a) if a else None

    def list_for_owner(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int]) -> List[ImageRecord]:
        rows = self.session.exec(
            self._owner_query(owner_kind, store_id, product_id)
            .order_by(ImageAsset.display_order, ImageAsset.id)
        ).all()
        return [self._to_dto(r) for r in rows]

    def list_all(self) -> Iterable[ImageRecord]:
        rows = self.session.exec(select(ImageAsset).order_by(ImageAsset.id)).all()
        return [self._to_dto(r) for r in rows]

    def find_by_basename(self, basename: str) -> List[ImageRecord]:
        # Legacy rows may store a full path, so match the tail as well
        suffix = f"%/{basename}"
        rows = self.session.exec(
            select(ImageAsset).where(or_(
                ImageAsset.filename == basename,
                ImageAsset.thumbnail_filename == basename,
                ImageAsset.filename.like(suffix),
                ImageAsset.thumbnail_filename.like(suffix),
            )).order_by(ImageAsset.id)
        ).all()
        # LIKE treats "_" as a wildcard; keep exact basename matches only
        return [
            self._to_dto(r) for r in rows
            if basename in (stored_basename(r.filename), stored_basename(r.thumbnail_filename))
        ]

    def set_primary(self, image_id: int) -> Optional[ImageRecord]:
        a = self.session.get(ImageAsset, image_id)
        if not a:
            return None
        try:
            self._clear_primary(OwnerKind(a.owner_kind), a.store_id, a.product_id, keep_id=a.id)
            a.is_primary = True
            self.session.add(a)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(a)
        return self._to_dto(a)

    def update_filenames(self, image_id: int, filename: str, thumbnail_filename: Optional[str]) -> Optional[ImageRecord]:
        a = self.session.get(ImageAsset, image_id)
        if not a:
            return None
        try:
            a.filename = filename
            a.thumbnail_filename = thumbnail_filename
            self.session.add(a)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(a)
        return self._to_dto(a)

    def promote_latest(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int]) -> Optional[ImageRecord]:
        """Make the newest remaining image of an owner its primary one."""
        a = self.session.exec(
            self._owner_query(owner_kind, store_id, product_id).order_by(ImageAsset.id.desc())
        ).first()
        if not a:
            return None
        return self.set_primary(a.id)

    def delete(self, image_id: int) -> bool:
        a = self.session.get(ImageAsset, image_id)
        if not a:
            return False
        try:
            self.session.delete(a)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return True
