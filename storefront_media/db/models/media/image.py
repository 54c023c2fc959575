# storefront_media/db/models/media/image.py
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime
from sqlalchemy import Index

class ImageAsset(SQLModel, table=True):
    __tablename__ = "image_assets"
    __table_args__ = (
        Index("ix_image_assets_owner", "owner_kind", "store_id", "product_id"),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    owner_kind: str = Field(max_length=20)
    store_id: int = Field(index=True)
    product_id: Optional[int] = Field(default=None, index=True)
    # Base names only; locations are derived from the owner ids
    filename: str = Field(max_length=255)
    thumbnail_filename: Optional[str] = Field(max_length=255, default=None)
    is_primary: bool = Field(default=False, index=True)
    display_order: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
