"""
Canonical storage layout for store and product images.

Every image lives under the upload root at a location derived only from its
owner ids and its base filename:

    stores/{store_id}/{filename}
    stores/{store_id}/thumbnails/{filename}
    stores/{store_id}/products/{product_id}/{filename}
    stores/{store_id}/products/{product_id}/thumbnails/{filename}

``resolve`` builds these paths and ``parse`` is its exact inverse. Neither
touches the filesystem.
"""
import posixpath
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .exceptions import InvalidFilename, InvalidOwner, UnrecognizedPath


class OwnerKind(str, Enum):
    STORE = "store"
    PRODUCT = "product"


class ImageKind(str, Enum):
    ORIGINAL = "original"
    THUMBNAIL = "thumbnail"


STORES_DIR = "stores"
PRODUCTS_DIR = "products"
THUMBNAILS_DIR = "thumbnails"

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "webp", "gif")
MAX_FILENAME_LENGTH = 255

_FILENAME_RE = re.compile(
    r"^[A-Za-z0-9][A-Za-z0-9._-]*\.(?:%s)$" % "|".join(IMAGE_EXTENSIONS),
    re.IGNORECASE,
)
_ID_RE = re.compile(r"^[1-9][0-9]*$")
_LEGACY_PREFIXES = ("public/uploads/", "uploads/")


@dataclass(frozen=True)
class ParsedImagePath:
    store_id: int
    product_id: Optional[int]
    filename: str
    kind: ImageKind

    @property
    def owner_kind(self) -> OwnerKind:
        return OwnerKind.PRODUCT if self.product_id is not None else OwnerKind.STORE


def validate_filename(filename: str) -> str:
    if not isinstance(filename, str) or not filename:
        raise InvalidFilename(str(filename), "empty filename")
    if len(filename) > MAX_FILENAME_LENGTH:
        raise InvalidFilename(filename, "filename too long")
    if "/" in filename or "\\" in filename:
        raise InvalidFilename(filename, "filename contains a path separator")
    if ".." in filename:
        raise InvalidFilename(filename, "filename contains '..'")
    if filename.startswith("."):
        raise InvalidFilename(filename, "filename starts with a dot")
    if not _FILENAME_RE.match(filename):
        raise InvalidFilename(filename, "filename does not match the allowed pattern")
    return filename


def _check_id(value, name: str) -> int:
    # bool is an int subclass but never a valid id
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidOwner(f"{name} must be a positive integer, got {value!r}")
    return value


def check_owner(owner_kind: OwnerKind, store_id: int, product_id: Optional[int]) -> None:
    _check_id(store_id, "store_id")
    if OwnerKind(owner_kind) == OwnerKind.PRODUCT:
        if product_id is None:
            raise InvalidOwner("product images require a product_id")
        _check_id(product_id, "product_id")
    elif product_id is not None:
        raise InvalidOwner("store images cannot carry a product_id")


def owner_dir(store_id: int, product_id: Optional[int] = None) -> str:
    _check_id(store_id, "store_id")
    if product_id is None:
        return posixpath.join(STORES_DIR, str(store_id))
    _check_id(product_id, "product_id")
    return posixpath.join(STORES_DIR, str(store_id), PRODUCTS_DIR, str(product_id))


def resolve(store_id: int, product_id: Optional[int], filename: str, kind: ImageKind = ImageKind.ORIGINAL) -> str:
    """Return the canonical relative path of an image."""
    validate_filename(filename)
    base = owner_dir(store_id, product_id)
    if ImageKind(kind) == ImageKind.THUMBNAIL:
        return posixpath.join(base, THUMBNAILS_DIR, filename)
    return posixpath.join(base, filename)


def resolve_pair(store_id: int, product_id: Optional[int], filename: str) -> Tuple[str, str]:
    return (
        resolve(store_id, product_id, filename, ImageKind.ORIGINAL),
        resolve(store_id, product_id, filename, ImageKind.THUMBNAIL),
    )


def _strip_legacy_prefix(path: str) -> str:
    path = path.replace("\\", "/").lstrip("/")
    for prefix in _LEGACY_PREFIXES:
        if path.startswith(prefix):
            return path[len(prefix):]
    return path


def _parse_id(segment: str, path: str) -> int:
    if not _ID_RE.match(segment):
        raise UnrecognizedPath(path)
    return int(segment)


def parse(path: str) -> ParsedImagePath:
    """Inverse of ``resolve``: extract owner ids, filename and kind from a path."""
    if not isinstance(path, str) or not path:
        raise UnrecognizedPath(str(path))
    parts = _strip_legacy_prefix(path).split("/")
    if len(parts) < 3 or parts[0] != STORES_DIR:
        raise UnrecognizedPath(path)

    store_id = _parse_id(parts[1], path)
    product_id = None
    rest = parts[2:]
    if len(rest) >= 3 and rest[0] == PRODUCTS_DIR:
        product_id = _parse_id(rest[1], path)
        rest = rest[2:]

    if len(rest) == 1:
        kind = ImageKind.ORIGINAL
    elif len(rest) == 2 and rest[0] == THUMBNAILS_DIR:
        kind = ImageKind.THUMBNAIL
    else:
        raise UnrecognizedPath(path)

    filename = rest[-1]
    try:
        validate_filename(filename)
    except InvalidFilename:
        raise UnrecognizedPath(path)
    return ParsedImagePath(store_id=store_id, product_id=product_id, filename=filename, kind=kind)


def is_managed(path: str) -> bool:
    try:
        parse(path)
    except UnrecognizedPath:
        return False
    return True


def record_path(record, kind: ImageKind = ImageKind.ORIGINAL) -> Optional[str]:
    """
    Path a stored record points at.

    Bare filenames resolve under the record's own owner. Legacy values that embed
    a managed path keep the owner ids embedded in them so the ownership check can
    see them; any other legacy value is reduced to its basename.
    """
    stored = record.filename if ImageKind(kind) == ImageKind.ORIGINAL else record.thumbnail_filename
    if not stored:
        return None
    if "/" not in stored and "\\" not in stored:
        return resolve(record.store_id, record.product_id, stored, kind)
    try:
        parsed = parse(stored)
    except UnrecognizedPath:
        basename = posixpath.basename(stored.replace("\\", "/"))
        return resolve(record.store_id, record.product_id, basename, kind)
    return resolve(parsed.store_id, parsed.product_id, parsed.filename, parsed.kind)


def stored_basename(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return posixpath.basename(value.replace("\\", "/"))
