from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .exceptions import ImageStorageError, UnrecognizedPath
from .image_paths import ImageKind, OwnerKind, parse, record_path


@dataclass(frozen=True)
class Ok:
    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Mismatch:
    reason: str

    @property
    def ok(self) -> bool:
        return False


ValidationResult = Union[Ok, Mismatch]


def validate(record, resolved_path: str) -> ValidationResult:
    """Check that ``resolved_path`` lives under the owner declared by ``record``."""
    try:
        parsed = parse(resolved_path)
    except UnrecognizedPath:
        return Mismatch(f"path {resolved_path!r} is outside the managed layout")

    if parsed.store_id != record.store_id:
        return Mismatch(
            f"path belongs to store {parsed.store_id}, record belongs to store {record.store_id}"
        )
    if parsed.product_id != record.product_id:
        return Mismatch(
            f"path belongs to product {parsed.product_id}, record belongs to product {record.product_id}"
        )
    owner_kind = getattr(record, "owner_kind", None)
    if owner_kind is not None and OwnerKind(owner_kind) != parsed.owner_kind:
        return Mismatch(f"path is a {parsed.owner_kind.value} image, record is a {OwnerKind(owner_kind).value} image")
    return Ok()


def validate_record(record, kind: ImageKind = ImageKind.ORIGINAL) -> Tuple[Optional[str], ValidationResult]:
    """Resolve where ``record`` points and validate it in one step."""
    try:
        path = record_path(record, kind)
    except ImageStorageError as e:
        return None, Mismatch(str(e))
    if path is None:
        return None, Ok()
    return path, validate(record, path)
