"""Save and restore MemoryBuffer snapshots as JSON files."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from .buffer import DEFAULT_SAVE_FILE, MemoryBuffer, assert_buffer
from .utils.io import PathLike, atomic_write_json, read_json

logger = logging.getLogger(__name__)


def save_memory(buffer: MemoryBuffer, path: PathLike) -> Path:
    """Write a snapshot of ``buffer`` to ``path`` (atomic replace)."""
    assert_buffer(buffer)
    p = Path(path)
    atomic_write_json(p, buffer.to_snapshot())
    return p


def load_memory(path: PathLike) -> MemoryBuffer:
    """Restore a buffer from a snapshot file.

    If the snapshot had autosave on, the restored buffer keeps autosaving
    to its recorded location and is written back once right away.
    """
    p = Path(path)
    try:
        data = read_json(p)
    except json.JSONDecodeError as e:
        raise ValueError(f"Snapshot {p} is not valid JSON: {e}") from e
    buf = MemoryBuffer.from_snapshot(data)
    buf.persist_if_enabled()
    return buf


def load_or_new_memory(
    capacity: int = 10,
    system_prompt: Optional[str] = None,
    save_dir: Union[str, Path, None] = None,
    save_file: str = DEFAULT_SAVE_FILE,
) -> MemoryBuffer:
    """Restore the buffer at ``save_dir/save_file`` or create a fresh autosaving one.

    ``capacity`` and ``system_prompt`` only apply when no file exists yet.
    """
    directory = os.path.abspath(str(save_dir if save_dir is not None else Path.cwd()))
    path = Path(directory) / save_file
    if path.exists():
        logger.info("Restoring memory buffer from %s", path)
        return load_memory(path)
    return MemoryBuffer(
        capacity=capacity,
        system_prompt=system_prompt,
        autosave=True,
        save_dir=directory,
        save_file=save_file,
    )


def enable_autosave(
    buffer: MemoryBuffer,
    save_dir: Union[str, Path, None] = None,
    save_file: Optional[str] = None,
) -> MemoryBuffer:
    """Turn autosave on (optionally moving the target) and snapshot immediately."""
    assert_buffer(buffer)
    buffer.autosave = True
    if save_dir is not None:
        buffer.save_dir = os.path.abspath(str(save_dir))
    if save_file is not None:
        buffer.save_file = str(save_file)
    buffer.persist_if_enabled()
    return buffer


def disable_autosave(buffer: MemoryBuffer) -> MemoryBuffer:
    assert_buffer(buffer)
    buffer.autosave = False
    return buffer


def get_save_path(buffer: MemoryBuffer) -> Path:
    return assert_buffer(buffer).save_path
