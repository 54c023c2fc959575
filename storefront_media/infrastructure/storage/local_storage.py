import errno
import logging
import os
import shutil
import tempfile
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional

from ...config import settings
from ...application.ports.storage_repo import StorageRepository

logger = logging.getLogger(__name__)


class LocalStorageRepository(StorageRepository):
    """
    Local filesystem storage rooted at ``settings.UPLOAD_DIR``.

    Writes go to a hidden temp file in the destination directory and are then
    renamed into place, so a reader never sees a partially written image.
    """

    def __init__(self, root: Optional[str] = None) -> None:
        self.root = Path(root or settings.UPLOAD_DIR).resolve()

    def absolute(self, rel_path: str) -> Path:
        rel = PurePosixPath(rel_path)
        if rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"relative path required: {rel_path!r}")
        path = (self.root / Path(*rel.parts)).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"path escapes storage root: {rel_path!r}")
        return path

    def exists(self, rel_path: str) -> bool:
        return self.absolute(rel_path).is_file()

    def read_bytes(self, rel_path: str) -> bytes:
        return self.absolute(rel_path).read_bytes()

    def _temp_in(self, directory: Path) -> str:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".", suffix=".tmp")
        os.close(fd)
        return tmp_path

    def write_atomic(self, rel_path: str, data: bytes) -> str:
        dest = self.absolute(rel_path)
        tmp_path = self._temp_in(dest.parent)
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, dest)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return rel_path

    def move_atomic(self, src_rel: str, dst_rel: str) -> str:
        """Move a file inside the root. Fails if the destination already exists."""
        src = self.absolute(src_rel)
        dst = self.absolute(dst_rel)
        if not src.is_file():
            raise FileNotFoundError(src_rel)
        dst.parent.mkdir(parents=True, exist_ok=True)
        try:
            # link() refuses to clobber an existing destination
            os.link(src, dst)
        except FileExistsError:
            raise
        except OSError as e:
            if e.errno not in (errno.EXDEV, errno.EPERM, errno.ENOTSUP, errno.EMLINK):
                raise
            if dst.exists():
                raise FileExistsError(dst_rel)
            tmp_path = self._temp_in(dst.parent)
            try:
                shutil.copy2(src, tmp_path)
                os.replace(tmp_path, dst)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        os.unlink(src)
        logger.info(f"Moved {src_rel} -> {dst_rel}")
        return dst_rel

    def import_file(self, src: Path, dst_rel: str) -> str:
        """Copy an outside file (backup, legacy location) into the root atomically."""
        dst = self.absolute(dst_rel)
        tmp_path = self._temp_in(dst.parent)
        try:
            shutil.copy2(src, tmp_path)
            os.replace(tmp_path, dst)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return dst_rel

    def export_file(self, rel_path: str, dst: Path) -> Path:
        dst = Path(dst)
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(self.absolute(rel_path), dst)
        return dst

    def delete(self, rel_path: str) -> bool:
        path = self.absolute(rel_path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def walk(self) -> Iterator[str]:
        if not self.root.is_dir():
            return
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for name in filenames:
                full = Path(dirpath) / name
                yield full.relative_to(self.root).as_posix()
