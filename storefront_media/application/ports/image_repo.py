from typing import Iterable, List, Optional, Protocol
from dataclasses import dataclass
from datetime import datetime

from ...image_paths import OwnerKind


@dataclass
class ImageRecord:
    id: int
    owner_kind: OwnerKind
    store_id: int
    product_id: Optional[int]
    filename: str
    thumbnail_filename: Optional[str]
    is_primary: bool
    display_order: int
    created_at: Optional[datetime] = None


class ImageRepository(Protocol):
    def create(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int], filename: str,
               thumbnail_filename: Optional[str], is_primary: bool = False, display_order: Optional[int] = None) -> ImageRecord:
        ...

    def get(self, image_id: int) -> Optional[ImageRecord]:
        ...

    def get_primary(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int]) -> Optional[ImageRecord]:
        ...

    def list_for_owner(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int]) -> List[ImageRecord]:
        ...

    def list_all(self) -> Iterable[ImageRecord]:
        ...

    def find_by_basename(self, basename: str) -> List[ImageRecord]:
        ...

    def set_primary(self, image_id: int) -> Optional[ImageRecord]:
        ...

    def update_filenames(self, image_id: int, filename: str, thumbnail_filename: Optional[str]) -> Optional[ImageRecord]:
        ...

    def promote_latest(self, owner_kind: OwnerKind, store_id: int, product_id: Optional[int]) -> Optional[ImageRecord]:
        ...

    def delete(self, image_id: int) -> bool:
        ...
