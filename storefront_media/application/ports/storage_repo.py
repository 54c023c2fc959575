from pathlib import Path
from typing import Iterator, Protocol


class StorageRepository(Protocol):
    """Filesystem under the upload root, addressed by POSIX relative paths."""

    def absolute(self, rel_path: str) -> Path:
        ...

    def exists(self, rel_path: str) -> bool:
        ...

    def read_bytes(self, rel_path: str) -> bytes:
        ...

    def write_atomic(self, rel_path: str, data: bytes) -> str:
        ...

    def move_atomic(self, src_rel: str, dst_rel: str) -> str:
        ...

    def import_file(self, src: Path, dst_rel: str) -> str:
        ...

    def export_file(self, rel_path: str, dst: Path) -> Path:
        ...

    def delete(self, rel_path: str) -> bool:
        ...

    def walk(self) -> Iterator[str]:
        ...
