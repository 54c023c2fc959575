from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import FileResponse, RedirectResponse
from sqlmodel import Session
from typing import Optional
import logging

from ..database import get_session
from ..config import settings
from ..exceptions import ImageNotFound, ImageStorageError, InvalidImage, InvalidOwner, OwnershipMismatch
from ..image_paths import ImageKind, OwnerKind
from ..schemas.images.image import DeletedImageResponse, ImageRecordResponse
from ..application.ports.image_repo import ImageRecord
from ..application.services.image_service import ImageService
from ..application.services.serving_service import ImageHandle, ImageServingService
from ..infrastructure.persistence.sqlalchemy.repositories.image_repository_sql import SqlImageRepository
from ..infrastructure.storage.local_storage import LocalStorageRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Images"])


def get_storage_repository() -> LocalStorageRepository:
    return LocalStorageRepository()


def get_image_service(session: Session = Depends(get_session),
                      storage: LocalStorageRepository = Depends(get_storage_repository)) -> ImageService:
    return ImageService(SqlImageRepository(session), storage)


def get_serving_service(session: Session = Depends(get_session),
                        storage: LocalStorageRepository = Depends(get_storage_repository)) -> ImageServingService:
    return ImageServingService(SqlImageRepository(session), storage)


def _to_response(record: ImageRecord) -> ImageRecordResponse:
    return ImageRecordResponse(
        id=record.id,
        owner_kind=record.owner_kind.value,
        store_id=record.store_id,
        product_id=record.product_id,
        filename=record.filename,
        thumbnail_filename=record.thumbnail_filename,
        is_primary=record.is_primary,
        display_order=record.display_order,
        created_at=record.created_at,
    )


async def _read_upload(file: UploadFile) -> bytes:
    if file.content_type not in settings.ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=415, detail=f"File type {file.content_type} not allowed")
    data = await file.read()
    if len(data) > settings.MAX_FILE_SIZE:
        raise HTTPException(status_code=413, detail=f"File too large. Maximum size: {settings.MAX_FILE_SIZE // (1024 * 1024)}MB")
    return data


def _store(image_service: ImageService, owner_kind: OwnerKind, store_id: int, product_id: Optional[int], data: bytes) -> ImageRecordResponse:
    try:
        record = image_service.store(owner_kind, store_id, product_id, data)
    except (InvalidImage, InvalidOwner) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OwnershipMismatch as e:
        logger.error(f"Refused upload for store={store_id} product={product_id}: {e.reason}")
        raise HTTPException(status_code=500, detail="Failed to store image")
    except (ImageStorageError, OSError) as e:
        logger.error(f"Failed to store image for store={store_id} product={product_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to store image")
    return _to_response(record)


def _serve(serving: ImageServingService, owner_kind: OwnerKind, store_id: int, product_id: Optional[int],
           thumbnail: bool, placeholder: str):
    kind = ImageKind.THUMBNAIL if thumbnail else ImageKind.ORIGINAL
    outcome = serving.resolve_primary(owner_kind, store_id, product_id, kind)
    if isinstance(outcome, ImageHandle):
        return FileResponse(str(outcome.path), media_type=outcome.media_type)
    # NotFound and Forbidden look the same to the client
    return RedirectResponse(url=placeholder, status_code=307)


@router.post("/stores/{store_id}/images", response_model=ImageRecordResponse, status_code=201)
async def upload_store_image(store_id: int, file: UploadFile = File(...),
                             image_service: ImageService = Depends(get_image_service)):
    data = await _read_upload(file)
    return _store(image_service, OwnerKind.STORE, store_id, None, data)


@router.post("/stores/{store_id}/products/{product_id}/images", response_model=ImageRecordResponse, status_code=201)
async def upload_product_image(store_id: int, product_id: int, file: UploadFile = File(...),
                               image_service: ImageService = Depends(get_image_service)):
    data = await _read_upload(file)
    return _store(image_service, OwnerKind.PRODUCT, store_id, product_id, data)


@router.get("/stores/{store_id}/primary-image")
def get_store_primary_image(store_id: int, thumbnail: bool = False,
                            serving: ImageServingService = Depends(get_serving_service)):
    return _serve(serving, OwnerKind.STORE, store_id, None, thumbnail, settings.PLACEHOLDER_STORE_IMAGE_URL)


@router.get("/stores/{store_id}/products/{product_id}/primary-image")
def get_product_primary_image(store_id: int, product_id: int, thumbnail: bool = False,
                              serving: ImageServingService = Depends(get_serving_service)):
    return _serve(serving, OwnerKind.PRODUCT, store_id, product_id, thumbnail, settings.PLACEHOLDER_PRODUCT_IMAGE_URL)


@router.put("/images/{image_id}/primary", response_model=ImageRecordResponse)
def set_primary_image(image_id: int, image_service: ImageService = Depends(get_image_service)):
    try:
        return _to_response(image_service.set_primary(image_id))
    except ImageNotFound:
        raise HTTPException(status_code=404, detail="Image not found")


@router.delete("/images/{image_id}", response_model=DeletedImageResponse)
def delete_image(image_id: int, image_service: ImageService = Depends(get_image_service)):
    try:
        image_service.delete_image(image_id)
    except ImageNotFound:
        raise HTTPException(status_code=404, detail="Image not found")
    return DeletedImageResponse(id=image_id)
