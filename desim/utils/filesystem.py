import hashlib
import os
import shutil
from pathlib import Path
from typing import List, Optional

from desim.utils.logger import logs


class FileSystem:
    """
    统一文件系统工具
    - 自动创建目录
    - 安全写入文件（临时文件 → rename）
    - 删除文件/目录
    - 内容指纹（缓存 digest 用，只读前 N 字节）
    """

    @staticmethod
    def ensure_dir(path: str | Path) -> Path:
        p = Path(path)
        if not p.exists():
            p.mkdir(parents=True, exist_ok=True)
            logs.debug(f"[FS] 创建目录: {p}")
        return p

    @staticmethod
    def get_file_size(path: str | Path) -> int:
        p = Path(path)
        if not p.exists():
            return 0
        return p.stat().st_size

    @staticmethod
    def safe_write(path: str | Path, data: bytes) -> None:
        """
        原子写入：先写 tmp 文件，再 replace → 正式文件
        """
        path = Path(path)
        FileSystem.ensure_dir(path.parent)

        tmp_path = path.with_suffix(path.suffix + ".tmp")

        with open(tmp_path, "wb") as f:
            f.write(data)

        os.replace(tmp_path, path)
        logs.debug(f"[FS] 原子写入完成: {path}")

    @staticmethod
    def tmp_path(path: str | Path) -> Path:
        """safe_write 约定的临时文件名（给 joblib 等自己写文件的库用）"""
        path = Path(path)
        return path.with_suffix(path.suffix + ".tmp")

    @staticmethod
    def commit_tmp(path: str | Path) -> Path:
        path = Path(path)
        os.replace(FileSystem.tmp_path(path), path)
        return path

    @staticmethod
    def remove(path: str | Path) -> None:
        p = Path(path)

        if not p.exists():
            logs.debug(f"[FS] 路径不存在，无需删除: {p}")
            return

        if p.is_dir():
            shutil.rmtree(p)
            logs.debug(f"[FS] 删除目录: {p}")
        else:
            p.unlink()
            logs.debug(f"[FS] 删除文件: {p}")

    @staticmethod
    def scan_dir(path: str | Path, suffix: Optional[str] = None) -> List[Path]:
        p = Path(path)
        if not p.exists():
            return []
        return sorted(
            f for f in p.iterdir()
            if f.is_file() and (suffix is None or f.suffix == suffix)
        )

    @staticmethod
    def file_hash(path: str | Path, length: Optional[int] = None, algo: str = "blake2b") -> str:
        """
        文件内容指纹

        length:
            只读取前 length 字节（None = 全文件）；大文件时用来换速度。
        """
        h = hashlib.blake2b(digest_size=16) if algo == "blake2b" else hashlib.new(algo)
        remaining = length
        with open(path, "rb") as f:
            while remaining is None or remaining > 0:
                size = 1 << 16 if remaining is None else min(1 << 16, remaining)
                chunk = f.read(size)
                if not chunk:
                    break
                h.update(chunk)
                if remaining is not None:
                    remaining -= len(chunk)
        return h.hexdigest()
