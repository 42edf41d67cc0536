"""Backup archive of the wrapper's state and workspace."""

from __future__ import annotations

import tarfile
import time
from pathlib import Path

DATA_ROOT = Path("/data")


def backup_filename() -> str:
    stamp = time.strftime("%Y-%m-%dT%H-%M-%SZ", time.gmtime())
    return f"openclaw-backup-{stamp}.tar.gz"


def _is_under(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


def write_backup(paths: list[Path], dest: Path, data_root: Path = DATA_ROOT) -> list[str]:
    """
    Write a gzip tarball of ``paths`` to ``dest``.

    Entries are stored relative to ``data_root`` when every path lives under
    it, otherwise relative to the filesystem root. Directories nested inside
    another archived path are not added twice. Returns the archive names.
    """
    root = data_root.resolve() if data_root.exists() else data_root
    resolved = list(dict.fromkeys(p.resolve() for p in paths if p.exists()))
    tops = [p for p in resolved if not any(other != p and other in p.parents for other in resolved)]
    relative_to_data = bool(resolved) and all(_is_under(p, root) for p in resolved)

    names: list[str] = []
    with tarfile.open(dest, "w:gz") as tar:
        for path in tops:
            if relative_to_data:
                name = path.relative_to(root).as_posix()
            else:
                name = path.as_posix().lstrip("/")
            tar.add(path, arcname=name or ".")
            names.append(name or ".")
    return names
