"""File-system pass-throughs for the editor's file commands.

Every operation runs in a worker thread so a slow disk never stalls the
event loop. Errors are the OS's own (FileNotFoundError, PermissionError,
...); the dispatcher turns them into ``ok: false`` responses.
"""

import asyncio
import os
import shutil
import stat
from typing import List


async def read_file(path: str) -> str:
    def _read() -> str:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    return await asyncio.to_thread(_read)


async def write_file(path: str, data: str) -> None:
    def _write() -> None:
        with open(path, "w", encoding="utf-8") as f:
            f.write(data)

    await asyncio.to_thread(_write)


async def list_dir(path: str = ".") -> List[str]:
    """Names of all entries in a directory, sorted."""
    return sorted(await asyncio.to_thread(os.listdir, path))


async def list_dirs(path: str = ".") -> List[str]:
    """Names of the sub-directories of a directory, sorted."""
    def _scan() -> List[str]:
        with os.scandir(path) as it:
            return sorted(entry.name for entry in it if entry.is_dir())

    return await asyncio.to_thread(_scan)


async def create_dir(path: str) -> None:
    """Create a directory and any missing parents (no error if it exists)."""
    await asyncio.to_thread(os.makedirs, path, exist_ok=True)


async def delete_file(path: str) -> None:
    await asyncio.to_thread(os.unlink, path)


async def delete_dir(path: str, recursive: bool = False) -> None:
    """
    Remove a directory. A missing path is not an error.

    Without ``recursive`` only an empty directory can be removed.
    """
    def _remove() -> None:
        if not os.path.lexists(path):
            return
        if recursive:
            shutil.rmtree(path)
        else:
            os.rmdir(path)

    await asyncio.to_thread(_remove)


async def is_dir(path: str) -> bool:
    """True for a directory; raises FileNotFoundError for a missing path."""
    st = await asyncio.to_thread(os.stat, path)
    return stat.S_ISDIR(st.st_mode)


async def rename(old_path: str, new_path: str) -> None:
    await asyncio.to_thread(os.rename, old_path, new_path)
