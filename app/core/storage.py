import logging
import os
import re
import secrets
import shutil
import tempfile
import time
from pathlib import Path
from typing import BinaryIO, Iterator


logger = logging.getLogger(__name__)

# Windows 不允许的字符与空白统一替换成下划线
_UNSAFE_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_filename(original_name: str) -> str:
    name = os.path.basename((original_name or "").replace("\\", "/")) or "file"
    stem, ext = os.path.splitext(name)
    stem = _UNSAFE_CHARS_RE.sub("_", stem)
    stem = _WHITESPACE_RE.sub("_", stem).strip(".") or "file"
    ext = _UNSAFE_CHARS_RE.sub("_", ext)
    return f"{stem[:150]}{ext[:16]}"


def generate_stored_name(original_name: str) -> str:
    """时间戳_随机数_原文件名，避免同名覆盖"""
    timestamp = int(time.time() * 1000)
    random = secrets.randbelow(10**9)
    return f"{timestamp}_{random:09d}_{sanitize_filename(original_name)}"


class LocalStorage:
    """上传目录：只有上传流程写入，其余角色只读"""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, stored_name: str) -> Path | None:
        value = str(stored_name or "").strip()
        if not value:
            return None
        path = Path(value)
        if path.is_absolute() or len(path.parts) != 1 or value in {".", ".."}:
            return None
        return self.root / value

    def save_stream(self, stored_name: str, source: BinaryIO) -> Path:
        """先写临时文件再原子替换，避免留下半截文件"""
        target = self.path_for(stored_name)
        if target is None:
            raise ValueError(f"invalid stored name: {stored_name!r}")
        self.ensure_root()
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="wb",
                delete=False,
                dir=str(self.root),
                prefix=".tmp_upload_",
            ) as tmp_file:
                tmp_name = tmp_file.name
                shutil.copyfileobj(source, tmp_file)
            os.replace(tmp_name, str(target))
            return target
        except OSError:
            if tmp_name and os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

    def exists(self, stored_name: str) -> bool:
        path = self.path_for(stored_name)
        return path is not None and path.is_file()

    def iter_chunks(self, stored_name: str, chunk_size: int) -> Iterator[bytes]:
        path = self.path_for(stored_name)
        if path is None:
            raise FileNotFoundError(stored_name)
        with open(path, "rb") as fh:
            while True:
                chunk = fh.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    def delete(self, stored_name: str) -> bool:
        path = self.path_for(stored_name)
        if path is None:
            return False
        try:
            if path.exists():
                path.unlink()
            return True
        except OSError:
            logger.exception("删除上传文件失败: %s", path)
            return False
