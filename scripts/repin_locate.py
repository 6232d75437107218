"""Manifest discovery for repinning workflows.

The helpers here walk a directory tree looking for ``Cargo.toml`` files while
pruning build output, vendored sources and hidden directories, and index the
crates they declare so other helpers can resolve a package name to its
directory.
"""

from __future__ import annotations

import os
import typing as typ
from pathlib import Path

import tomllib
from repin_errors import FilesystemError, ManifestStructureError, ParseError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

__all__ = [
    "MANIFEST_NAME",
    "SKIP_DIRS",
    "collect_crates",
    "iter_manifests",
    "read_package_name",
    "relative_path",
]

MANIFEST_NAME: typ.Final[str] = "Cargo.toml"

# Build output and vendored dependency copies.
SKIP_DIRS: typ.Final[frozenset[str]] = frozenset({"target", "vendor"})


def iter_manifests(root: Path) -> cabc.Iterator[Path]:
    """Yield every ``Cargo.toml`` below ``root`` in a deterministic order.

    Parameters
    ----------
    root : Path
        Directory to search recursively.

    Returns
    -------
    Iterator[Path]
        Lazily produced manifest paths. Directories are visited depth first in
        lexical order and a directory's own manifest is yielded before the
        manifests of its children.

    Raises
    ------
    FilesystemError
        Raised immediately when ``root`` is missing or is not a directory.

    Examples
    --------
    >>> from pathlib import Path
    >>> [path.name for path in iter_manifests(Path("."))]  # doctest: +SKIP
    ['Cargo.toml', 'Cargo.toml']
    """
    root = Path(root)
    if not root.exists():
        message = "search root does not exist"
        raise FilesystemError(message, path=root)
    if not root.is_dir():
        message = "search root is not a directory"
        raise FilesystemError(message, path=root)
    return _walk_manifests(root)


def _walk_manifests(root: Path) -> cabc.Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
        dirnames[:] = sorted(name for name in dirnames if not _should_skip_dir(name))
        if MANIFEST_NAME in filenames:
            yield Path(dirpath) / MANIFEST_NAME


def _should_skip_dir(name: str) -> bool:
    """Return ``True`` for directories that never hold workspace manifests."""
    return name in SKIP_DIRS or name.startswith(".")


def _raise_walk_error(error: OSError) -> None:
    path = Path(error.filename) if error.filename else None
    message = f"unable to read directory: {error.strerror or error}"
    raise FilesystemError(message, path=path) from error


def relative_path(target: Path, base: Path) -> str:
    """Return ``target`` relative to ``base`` using ``/`` separators.

    Examples
    --------
    >>> relative_path(Path("/src/upstream/crates/a"), Path("/src/consumer"))
    '../upstream/crates/a'
    """
    resolved_target = Path(target).resolve()
    resolved_base = Path(base).resolve()
    return Path(os.path.relpath(resolved_target, resolved_base)).as_posix()


def read_package_name(manifest: Path) -> str | None:
    """Return ``[package].name`` from ``manifest`` or ``None`` when absent."""
    try:
        data = tomllib.loads(manifest.read_text(encoding="utf-8"))
    except OSError as error:
        message = f"unable to read manifest: {error.strerror or error}"
        raise FilesystemError(message, path=manifest) from error
    except tomllib.TOMLDecodeError as error:
        raise ParseError(str(error), path=manifest) from error

    package = data.get("package")
    if not isinstance(package, dict):
        return None
    name = package.get("name")
    return name if isinstance(name, str) else None


def collect_crates(root: Path) -> dict[str, Path]:
    """Map every crate declared below ``root`` to its directory.

    Parameters
    ----------
    root : Path
        Checkout or workspace directory to index.

    Returns
    -------
    dict[str, Path]
        Package names mapped to the directory containing their manifest.
        Manifests without a ``[package]`` table are ignored.

    Raises
    ------
    FilesystemError
        Raised when ``root`` cannot be searched.
    ParseError
        Raised when a discovered manifest is not valid TOML.
    ManifestStructureError
        Raised when two manifests declare the same package name, because a
        patch or path rewrite for that name would be ambiguous.
    """
    crates: dict[str, Path] = {}
    duplicates: dict[str, list[Path]] = {}
    for manifest in iter_manifests(root):
        name = read_package_name(manifest)
        if name is None:
            continue
        crate_dir = manifest.parent
        if name in crates:
            duplicates.setdefault(name, [crates[name]]).append(crate_dir)
            continue
        crates[name] = crate_dir

    if duplicates:
        details = "; ".join(
            f"{name!r} in " + ", ".join(str(path) for path in paths)
            for name, paths in sorted(duplicates.items())
        )
        message = f"duplicate crate names detected: {details}"
        raise ManifestStructureError(message, path=Path(root))
    return crates
