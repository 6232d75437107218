"""Facade module for manifest repinning operations.

This module exposes the two public operations, ``update`` and ``patch``, taking
caller-level parameters and delegating to the focused helper modules. Callers
should prefer these entry points over the helpers for clarity.
"""

from __future__ import annotations

import typing as typ
from pathlib import Path

import repin_patch as _patch
import repin_update as _update
from plumbum import local as _default_local
from repin_classify import DEFAULT_IDENTITIES, resolve_identities

if typ.TYPE_CHECKING:
    import collections.abc as cabc

local = _default_local


def update(
    root: Path,
    selector: _update.Selector,
    identity_filter: cabc.Iterable[str] | None = None,
    *,
    git: str | None = None,
    exclude_file: Path | None = None,
) -> _update.UpdateReport:
    """Repin matching dependencies in every manifest below ``root``.

    Parameters
    ----------
    root : Path
        Directory searched recursively for ``Cargo.toml`` files.
    selector : Selector
        Exactly one of a branch, tag, rev or local checkout path.
    identity_filter : Iterable[str] | None, optional
        Upstream identity names or git URLs; ``None`` matches the whole default
        project family.
    git : str | None, optional
        Replacement git locator for matched dependencies.
    exclude_file : Path | None, optional
        TOML file with a ``[repin-exclude]`` table of packages to skip.

    Returns
    -------
    UpdateReport
        Changed, unchanged and failed manifests. Per-manifest failures do not
        stop the run.
    """
    identities = resolve_identities(identity_filter)
    exclude = (
        _update.load_exclusions(exclude_file)
        if exclude_file is not None
        else frozenset()
    )
    return _update.update_manifests(
        Path(root),
        selector,
        identities,
        git=git,
        exclude=exclude,
    )


def patch(
    source_dir: Path,
    target: Path,
    identity_filter: cabc.Iterable[str] | None = None,
    *,
    crates_io: bool = False,
    target_key: str | None = None,
    point_to_git: str | None = None,
    point_to_git_branch: str | None = None,
    point_to_git_commit: str | None = None,
    timeout_secs: int = _patch.CARGO_LOCATE_TIMEOUT_S,
) -> bool:
    """Add or refresh the patch section for ``source_dir`` in ``target``.

    ``target`` may be a workspace ``Cargo.toml`` or a directory inside the
    consuming workspace. Returns ``True`` when the manifest was rewritten.
    """
    patch_key = _patch.select_patch_key(
        identity_filter, crates_io=crates_io, target_key=target_key
    )
    point_to = _patch.PointTo.from_options(
        point_to_git, point_to_git_branch, point_to_git_commit
    )
    _patch.local = local
    manifest = _patch.resolve_target_manifest(
        Path(target), timeout_secs=timeout_secs
    )
    return _patch.build_patch(
        Path(source_dir), manifest, patch_key, point_to=point_to
    )


GitSelector = _update.GitSelector
PathSelector = _update.PathSelector
UpdateReport = _update.UpdateReport
make_selector = _update.make_selector

__all__ = [
    "DEFAULT_IDENTITIES",
    "GitSelector",
    "PathSelector",
    "UpdateReport",
    "local",
    "make_selector",
    "patch",
    "update",
]
