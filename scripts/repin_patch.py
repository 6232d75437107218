"""Patch table management for consuming workspace manifests.

The helpers in this module add ``[patch."<source>"]`` entries for every crate
of a local upstream checkout, so a consuming workspace builds against that
checkout instead of the pinned upstream version.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import logging
import typing as typ
from pathlib import Path

from plumbum import local
from plumbum.commands import CommandNotFound
from plumbum.commands.processes import ProcessTimedOut
from repin_classify import DEFAULT_IDENTITIES, resolve_identities
from repin_errors import FilesystemError, ManifestStructureError, SelectorError
from repin_locate import MANIFEST_NAME, collect_crates, relative_path
from repin_manifest import (
    Manifest,
    declares_workspace,
    load_manifest,
    parse_inline_table,
)
from repin_serialise import write_manifest
from tomlkit import table
from tomlkit.items import Item

__all__ = [
    "CARGO_LOCATE_TIMEOUT_S",
    "CRATES_IO",
    "DEFAULT_PATCH_KEY",
    "PointTo",
    "apply_patch",
    "build_patch",
    "resolve_target_manifest",
    "select_patch_key",
]

LOGGER = logging.getLogger(__name__)

CRATES_IO: typ.Final[str] = "crates-io"

DEFAULT_PATCH_KEY: typ.Final[str] = typ.cast(
    "str",
    next(
        identity.locator
        for identity in DEFAULT_IDENTITIES
        if identity.name == "polkadot-sdk"
    ),
)

CARGO_LOCATE_TIMEOUT_S = 60


@dc.dataclass(frozen=True)
class PointTo:
    """Describe what each patch entry should resolve to.

    The default points every crate at its local directory. Supplying
    ``repository`` together with ``branch`` or ``commit`` points the entries at
    that git repository instead.
    """

    repository: str | None = None
    branch: str | None = None
    commit: str | None = None

    @classmethod
    def from_options(
        cls,
        repository: str | None = None,
        branch: str | None = None,
        commit: str | None = None,
    ) -> PointTo:
        """Validate the CLI combination of git target options.

        Raises
        ------
        SelectorError
            Raised when ``branch`` and ``commit`` are both given, when either
            is given without ``repository``, or when ``repository`` is given
            without one of them.
        """
        if branch is not None and commit is not None:
            message = "point-to-git branch and commit are mutually exclusive"
            raise SelectorError(message)
        if repository is None:
            if branch is not None or commit is not None:
                message = "a point-to-git branch or commit requires a repository"
                raise SelectorError(message)
            return cls()
        if branch is None and commit is None:
            message = "a point-to-git repository requires a branch or a commit"
            raise SelectorError(message)
        return cls(repository=repository, branch=branch, commit=commit)

    def entry_pairs(self, crate_path: str) -> tuple[tuple[str, str], ...]:
        """Return the key/value pairs of the patch entry for one crate."""
        if self.repository is None:
            return (("path", crate_path),)
        if self.branch is not None:
            return (("git", self.repository), ("branch", self.branch))
        return (("git", self.repository), ("rev", typ.cast("str", self.commit)))


def select_patch_key(
    identity_filter: cabc.Iterable[str] | None,
    *,
    crates_io: bool = False,
    target_key: str | None = None,
) -> str:
    """Return the ``[patch.<key>]`` source key for the requested target.

    Parameters
    ----------
    identity_filter : Iterable[str] | None
        At most one identity name or git URL. Without one the Polkadot SDK
        repository is patched.
    crates_io : bool, optional
        Patch ``crates-io`` instead of a git source.
    target_key : str | None, optional
        Use a custom patch source key verbatim.

    Raises
    ------
    SelectorError
        Raised for conflicting options, several identities, or an identity
        without a known git locator.
    """
    if crates_io and target_key is not None:
        message = "crates-io and a custom patch target are mutually exclusive"
        raise SelectorError(message)
    if crates_io:
        return CRATES_IO
    if target_key is not None:
        return target_key

    names = tuple(identity_filter or ())
    if not names:
        return DEFAULT_PATCH_KEY
    identities = resolve_identities(names)
    if len(identities) != 1:
        message = "patch accepts a single upstream identity"
        raise SelectorError(message)
    (identity,) = identities
    if identity.locator is None:
        message = (
            f"upstream identity {identity.name!r} has no git locator; "
            "pass the repository URL instead"
        )
        raise SelectorError(message)
    return identity.locator


def build_patch(
    source_dir: Path,
    target_manifest: Path,
    patch_key: str,
    *,
    point_to: PointTo | None = None,
) -> bool:
    """Patch ``target_manifest`` with every crate found in ``source_dir``.

    Parameters
    ----------
    source_dir : Path
        Local checkout of the upstream workspace.
    target_manifest : Path
        Workspace root ``Cargo.toml`` receiving the patch section.
    patch_key : str
        Source key of the ``[patch]`` sub-table, usually the upstream git URL.
    point_to : PointTo | None, optional
        Entry target; defaults to crate paths relative to the manifest.

    Returns
    -------
    bool
        ``True`` when the manifest changed and was rewritten.

    Raises
    ------
    ManifestStructureError
        Raised when the target is not a workspace root, its patch tables are
        malformed, or two source crates share a name. The manifest is left
        untouched.
    """
    crates = collect_crates(source_dir)
    manifest = load_manifest(target_manifest)
    changed = apply_patch(manifest, crates, patch_key, point_to=point_to)
    if changed:
        write_manifest(manifest)
        LOGGER.info("patched %s", manifest.path)
    return changed


def apply_patch(
    manifest: Manifest,
    crates: cabc.Mapping[str, Path],
    patch_key: str,
    *,
    point_to: PointTo | None = None,
) -> bool:
    """Insert or refresh the patch entries for ``crates`` in ``manifest``.

    Entries already present for other crates are left untouched. Returns
    ``True`` when the document was modified.
    """
    if not declares_workspace(manifest):
        message = (
            "patch sections can only be added to a workspace root manifest; "
            "[workspace] is missing"
        )
        raise ManifestStructureError(message, path=manifest.path)
    if not crates:
        LOGGER.warning("no crates found to patch into %s", manifest.path)
        return False

    point_to = point_to or PointTo()
    patch_table = _ensure_patch_source_table(manifest, patch_key)
    base = manifest.path.parent
    changed = False
    for name in sorted(crates):
        pairs = point_to.entry_pairs(relative_path(crates[name], base))
        if _set_patch_entry(patch_table, name, pairs):
            LOGGER.debug("adding patch for %s", name)
            changed = True
    return changed


def _ensure_patch_source_table(
    manifest: Manifest, patch_key: str
) -> cabc.MutableMapping[str, typ.Any]:
    """Return ``[patch.<patch_key>]``, creating the tables when needed."""
    document = manifest.document
    patch_table = document.get("patch")
    if patch_table is None:
        patch_table = table(is_super_table=True)
        document["patch"] = patch_table
    elif not isinstance(patch_table, cabc.MutableMapping):
        message = "[patch] is not a table"
        raise ManifestStructureError(message, path=manifest.path)

    source_table = patch_table.get(patch_key)
    if source_table is None:
        source_table = table()
        patch_table[patch_key] = source_table
    elif not isinstance(source_table, cabc.MutableMapping):
        message = f"[patch.{patch_key!r}] is not a table"
        raise ManifestStructureError(message, path=manifest.path)
    return typ.cast("cabc.MutableMapping[str, typ.Any]", source_table)


def _set_patch_entry(
    patch_table: cabc.MutableMapping[str, typ.Any],
    name: str,
    pairs: tuple[tuple[str, str], ...],
) -> bool:
    existing = patch_table.get(name)
    if existing is not None and _unwrap(existing) == dict(pairs):
        return False
    patch_table[name] = parse_inline_table(pairs)
    return True


def _unwrap(value: object) -> object:
    if isinstance(value, Item):
        return value.unwrap()
    return value


def resolve_target_manifest(
    path: Path, *, timeout_secs: int = CARGO_LOCATE_TIMEOUT_S
) -> Path:
    """Return the workspace root manifest that should receive the patch.

    A path naming a ``Cargo.toml`` is used as-is. A directory whose manifest
    declares ``[workspace]`` uses that manifest; any other directory asks
    ``cargo locate-project`` for its workspace root.

    Raises
    ------
    FilesystemError
        Raised when ``path`` does not exist or cargo cannot locate the
        workspace.
    """
    path = Path(path)
    if path.name == MANIFEST_NAME:
        if not path.is_file():
            message = "manifest does not exist"
            raise FilesystemError(message, path=path)
        return path
    if not path.is_dir():
        message = "path does not exist"
        raise FilesystemError(message, path=path)

    candidate = path / MANIFEST_NAME
    if candidate.is_file() and declares_workspace(load_manifest(candidate)):
        return candidate
    return _locate_workspace_manifest(path, timeout_secs)


def _locate_workspace_manifest(directory: Path, timeout_secs: int) -> Path:
    """Run ``cargo locate-project`` and return the workspace manifest path."""
    with local.cwd(directory):
        try:
            locate_project = local["cargo"][
                "locate-project", "--workspace", "--message-format", "plain"
            ]
            return_code, stdout, stderr = locate_project.run(
                retcode=None,
                timeout=timeout_secs,
            )
        except CommandNotFound as error:
            message = "cargo not found on PATH; unable to locate the workspace"
            raise FilesystemError(message, path=directory) from error
        except ProcessTimedOut as error:
            message = f"cargo locate-project timed out after {timeout_secs} seconds"
            raise FilesystemError(message, path=directory) from error
    if return_code != 0:
        diagnostics = (stderr or stdout or "").strip()
        detail = f": {diagnostics}" if diagnostics else ""
        message = f"cargo locate-project failed with exit code {return_code}{detail}"
        raise FilesystemError(message, path=directory)

    located = stdout.strip()
    if not located:
        message = "cargo locate-project returned no manifest path"
        raise FilesystemError(message, path=directory)
    return Path(located)
