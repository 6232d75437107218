"""Manifest serialisation helpers shared across repinning workflows.

Changed manifests are written to a temporary file in the manifest's own
directory and then moved over the original, so an interrupted run never leaves
a truncated ``Cargo.toml`` behind.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
import typing as typ
from pathlib import Path

from repin_errors import FilesystemError

if typ.TYPE_CHECKING:
    from repin_manifest import Manifest

__all__ = ["write_manifest", "write_text_atomically"]


def write_manifest(manifest: Manifest) -> None:
    """Persist the rendered ``manifest`` and record the new on-disk text."""
    rendered = manifest.render()
    write_text_atomically(manifest.path, rendered)
    manifest.text = rendered


def write_text_atomically(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` via a same-directory temporary file.

    Parameters
    ----------
    path : Path
        Destination file. Its parent directory must exist.
    text : str
        Content written verbatim, without newline translation.

    Raises
    ------
    FilesystemError
        Raised when the temporary file cannot be created, written or moved
        into place. The temporary file is removed before the error propagates.
    """
    path = Path(path)
    try:
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            newline="",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        )
    except OSError as error:
        message = f"unable to create temporary file: {error.strerror or error}"
        raise FilesystemError(message, path=path) from error

    temporary = Path(handle.name)
    try:
        with handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        _copy_mode(path, temporary)
        temporary.replace(path)
    except OSError as error:
        with contextlib.suppress(FileNotFoundError):
            temporary.unlink()
        message = f"unable to write manifest: {error.strerror or error}"
        raise FilesystemError(message, path=path) from error
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            temporary.unlink()
        raise


def _copy_mode(source: Path, destination: Path) -> None:
    """Carry the permission bits of ``source`` over to ``destination``."""
    try:
        mode = source.stat().st_mode
    except FileNotFoundError:
        return
    destination.chmod(mode & 0o7777)
