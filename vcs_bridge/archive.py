# vcs_bridge/archive.py

"""
Repository archive extraction and ``.git`` remote synthesis.

Archives downloaded from providers are gzip-compressed tarballs, mostly with
one top-level directory named after the repository and commit. They are
extracted member by member so that no entry can escape the destination.
"""

import asyncio
from collections.abc import AsyncIterable, Callable, Iterable
import functools
import io
import logging
import os
from pathlib import Path
import shutil
import tarfile
from typing import Any, BinaryIO

from git import Repo

from .error_handling.core import IllegalArchivePathError

logger = logging.getLogger(__name__)

_COPY_CHUNK_SIZE = 64 * 1024


def _remove_base_dir(relative_path: str) -> str:
    parts = os.path.normpath(relative_path).split(os.sep)
    if len(parts) < 2:
        return ""
    return os.path.join(*parts[1:])


def sanitize_extraction_path(file_path: str, destination: str | Path) -> str:
    """
    Resolve an archive member path inside ``destination``.

    Raises:
        IllegalArchivePathError: If the member would land outside the destination
    """
    destination = os.path.normpath(str(destination))
    target = os.path.normpath(os.path.join(destination, file_path))
    if not target.startswith(destination + os.sep):
        raise IllegalArchivePathError(file_path)
    return target


class ChunkStreamReader(io.RawIOBase):
    """
    Blocking, read-only file object over a source of byte chunks.

    ``next_chunk`` returns the next chunk, or ``None`` once the source is
    exhausted. Extraction runs in a worker thread and pulls the archive
    through this reader while it downloads.
    """

    def __init__(self, next_chunk: Callable[[], bytes | None]) -> None:
        super().__init__()
        self._next_chunk = next_chunk
        self._pending = b""
        self._exhausted = False

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        while not self._pending and not self._exhausted:
            chunk = self._next_chunk()
            if chunk is None:
                self._exhausted = True
            else:
                self._pending = chunk

        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size


def iterator_reader(chunks: Iterable[bytes]) -> ChunkStreamReader:
    """Reader over a synchronous chunk iterator, e.g. a streamed SDK response."""
    iterator = iter(chunks)
    return ChunkStreamReader(lambda: next(iterator, None))


def async_iterator_reader(
    chunks: AsyncIterable[bytes], loop: asyncio.AbstractEventLoop
) -> ChunkStreamReader:
    """
    Reader over an async chunk iterator owned by ``loop``.

    Must be read from a thread other than the loop's own; each read waits
    for the loop to produce the next chunk.
    """
    iterator = aiter(chunks)

    async def _next() -> bytes | None:
        try:
            return await anext(iterator)
        except StopAsyncIteration:
            return None

    return ChunkStreamReader(
        lambda: asyncio.run_coroutine_threadsafe(_next(), loop).result()
    )


def extract_tar_gz(
    source: bytes | BinaryIO,
    destination: str | Path,
    remove_base_dir: bool = False,
) -> None:
    """
    Extract a tar.gz archive into ``destination``.

    Args:
        source: The archive bytes or a readable binary stream, read sequentially
        destination: Directory to extract into, created when missing
        remove_base_dir: Drop the first path component of every member

    Only directories and regular files are written; links and devices are
    skipped.
    """
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)

    os.makedirs(destination, mode=0o700, exist_ok=True)

    with tarfile.open(fileobj=source, mode="r|gz") as archive:
        for member in archive:
            file_path = member.name
            if remove_base_dir:
                file_path = _remove_base_dir(file_path)
            if not file_path or file_path == ".":
                continue

            target = sanitize_extraction_path(file_path, destination)

            if member.isdir():
                os.makedirs(target, mode=0o700, exist_ok=True)
            elif member.isfile():
                os.makedirs(os.path.dirname(target), mode=0o700, exist_ok=True)
                extracted = archive.extractfile(member)
                if extracted is None:
                    continue
                with extracted, open(target, "wb") as target_file:
                    shutil.copyfileobj(extracted, target_file, _COPY_CHUNK_SIZE)
                os.chmod(target, (member.mode & 0o777) or 0o600)


async def extract_tar_gz_stream(
    chunks: AsyncIterable[bytes],
    destination: str | Path,
    remove_base_dir: bool = False,
) -> None:
    """Extract a tar.gz archive in a worker thread while ``chunks`` is still downloading."""
    loop = asyncio.get_running_loop()
    reader = async_iterator_reader(chunks, loop)
    await loop.run_in_executor(
        None, functools.partial(extract_tar_gz, reader, destination, remove_base_dir)
    )


def create_dot_git_folder_with_remote(
    path: str | Path, remote_name: str, remote_url: str
) -> None:
    """Initialise ``path`` as a git repository with one remote. No-op if ``.git`` exists."""
    if (Path(path) / ".git").exists():
        logger.debug(f"{path} already contains a .git folder")
        return
    repo = Repo.init(path)
    repo.create_remote(remote_name, remote_url)
