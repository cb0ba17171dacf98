"""Unpacking of downloaded package archives into store directories."""

from __future__ import annotations

import io
import logging
import os
import posixpath
import tarfile
import zipfile
from typing import List, Optional

from ..errors import StoreError
from ..models.ecosystem import Ecosystem

logger = logging.getLogger(__name__)


def _safe_relpath(name: str) -> Optional[str]:
    """Normalize an archive member path; None if it escapes the destination."""
    normalized = posixpath.normpath(name.replace("\\", "/")).lstrip("/")
    if normalized in ("", ".") or normalized.startswith("..") or ":" in normalized.split("/")[0]:
        return None
    return normalized


def _common_prefix(names: List[str]) -> Optional[str]:
    """Return the single top-level directory shared by every file, if any."""
    if not names or not all("/" in n for n in names):
        return None
    tops = {n.split("/", 1)[0] for n in names}
    return tops.pop() if len(tops) == 1 else None


def _write_file(dest: str, rel: str, data: bytes) -> None:
    path = os.path.join(dest, *rel.split("/"))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as fh:
        fh.write(data)


def _extract_tar(dest: str, content: bytes) -> int:
    with tarfile.open(fileobj=io.BytesIO(content), mode="r:*") as tar:
        members = [m for m in tar.getmembers() if m.isfile()]
        names = [_safe_relpath(m.name) for m in members]
        if any(n is None for n in names):
            raise StoreError("Archive contains paths outside the package root")
        prefix = _common_prefix(names)
        count = 0
        for member, rel in zip(members, names):
            if prefix:
                rel = rel[len(prefix) + 1:]
            fh = tar.extractfile(member)
            if fh is None:
                continue
            _write_file(dest, rel, fh.read())
            count += 1
        return count


def _extract_zip(dest: str, content: bytes) -> int:
    with zipfile.ZipFile(io.BytesIO(content)) as zf:
        infos: List[zipfile.ZipInfo] = [i for i in zf.infolist() if not i.is_dir()]
        count = 0
        for info in infos:
            rel = _safe_relpath(info.filename)
            if rel is None:
                raise StoreError("Archive contains paths outside the package root")
            _write_file(dest, rel, zf.read(info))
            count += 1
        return count


def unpack_package(dest: str, content: bytes, ecosystem: Ecosystem, filename: str) -> int:
    """Unpack content into dest.

    npm tarballs and sdists lose their single top-level directory; wheels are
    unzipped as-is. Content that is not a recognised archive is stored
    verbatim under ``filename``.

    Returns:
        int: Number of files written.
    """
    os.makedirs(dest, exist_ok=True)
    buf = io.BytesIO(content)
    try:
        if zipfile.is_zipfile(buf):
            return _extract_zip(dest, content)
        buf.seek(0)
        if tarfile.is_tarfile(buf):
            return _extract_tar(dest, content)
    except (tarfile.TarError, zipfile.BadZipFile, EOFError) as exc:
        raise StoreError(f"Corrupt archive {filename}: {exc}") from exc

    logger.debug("Storing %s verbatim (%s archive not recognised)", filename, ecosystem.package_format)
    _write_file(dest, filename, content)
    return 1
