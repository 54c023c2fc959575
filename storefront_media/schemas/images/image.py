# storefront_media/schemas/images/image.py
from datetime import datetime
from pydantic import BaseModel
from typing import Optional


class ImageRecordResponse(BaseModel):
    id: int
    owner_kind: str
    store_id: int
    product_id: Optional[int] = None
    filename: str
    thumbnail_filename: Optional[str] = None
    is_primary: bool
    display_order: int = 0
    created_at: Optional[datetime] = None


class DeletedImageResponse(BaseModel):
    id: int
    deleted: bool = True
