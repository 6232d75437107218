"""Dependency repinning for git-sourced manifest entries.

These helpers implement the ``update`` workflow: every dependency whose git
locator belongs to one of the requested upstream identities has its pinning
selector (``branch``, ``tag`` or ``rev``) replaced, or is switched to a local
``path`` dependency. Everything else in the manifest is left untouched.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import logging
import typing as typ
from pathlib import Path

import tomllib
from repin_classify import classify
from repin_errors import (
    FilesystemError,
    ManifestStructureError,
    ParseError,
    RepinError,
    SelectorError,
)
from repin_locate import collect_crates, iter_manifests, relative_path
from repin_manifest import (
    SELECTOR_KEYS,
    DependencyEntry,
    Manifest,
    iter_dependency_entries,
    load_manifest,
    parse_inline_table,
)
from repin_serialise import write_manifest
from tomlkit.items import InlineTable

if typ.TYPE_CHECKING:
    from repin_classify import UpstreamIdentity

__all__ = [
    "EXCLUDE_TABLE",
    "GitSelector",
    "ManifestFailure",
    "PathSelector",
    "Selector",
    "UpdateReport",
    "load_exclusions",
    "make_selector",
    "rewrite",
    "update_manifests",
    "validate_selector",
]

LOGGER = logging.getLogger(__name__)

EXCLUDE_TABLE: typ.Final[str] = "repin-exclude"

GIT_SOURCE_KEYS: typ.Final[tuple[str, ...]] = ("git", *SELECTOR_KEYS)


@dc.dataclass(frozen=True)
class GitSelector:
    """Pin git dependencies to a ``branch``, ``tag`` or ``rev``."""

    kind: str
    value: str


@dc.dataclass(frozen=True)
class PathSelector:
    """Point git dependencies at the crates of a local checkout."""

    directory: Path


Selector = GitSelector | PathSelector


@dc.dataclass(frozen=True)
class ManifestFailure:
    """A manifest that could not be updated and the reason why."""

    path: Path
    error: RepinError


@dc.dataclass
class UpdateReport:
    """Outcome of an ``update`` run across a manifest tree."""

    changed: list[Path] = dc.field(default_factory=list)
    unchanged: list[Path] = dc.field(default_factory=list)
    failures: list[ManifestFailure] = dc.field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """Return ``True`` when every manifest was processed without error."""
        return not self.failures


def make_selector(
    *,
    branch: str | None = None,
    tag: str | None = None,
    rev: str | None = None,
    path: Path | None = None,
) -> Selector:
    """Build the selector for exactly one of the supplied pinning options.

    Raises
    ------
    SelectorError
        Raised when none, or more than one, of the options is given.

    Examples
    --------
    >>> make_selector(rev="abc123")
    GitSelector(kind='rev', value='abc123')
    """
    options = {"branch": branch, "tag": tag, "rev": rev, "path": path}
    given = [name for name, value in options.items() if value is not None]
    if len(given) != 1:
        detail = ", ".join(given) if given else "none"
        message = (
            "exactly one of branch, tag, rev or path must be given "
            f"(received: {detail})"
        )
        raise SelectorError(message)

    (kind,) = given
    if kind == "path":
        return PathSelector(Path(typ.cast("Path", path)))
    return validate_selector(GitSelector(kind, str(options[kind])))


def validate_selector(selector: object) -> Selector:
    """Return ``selector`` after re-checking it names a single pinning kind."""
    if isinstance(selector, PathSelector):
        return selector
    if not isinstance(selector, GitSelector):
        message = f"unsupported selector {selector!r}"
        raise SelectorError(message)
    if selector.kind not in SELECTOR_KEYS:
        message = f"unknown selector kind {selector.kind!r}"
        raise SelectorError(message)
    if not selector.value:
        message = f"empty value for selector {selector.kind!r}"
        raise SelectorError(message)
    return selector


def rewrite(
    manifest: Manifest,
    identities: cabc.Iterable[UpstreamIdentity],
    selector: Selector,
    *,
    git: str | None = None,
    exclude: cabc.Container[str] = frozenset(),
    crates: cabc.Mapping[str, Path] | None = None,
) -> bool:
    """Repin every dependency of ``manifest`` that matches ``identities``.

    Parameters
    ----------
    manifest : Manifest
        Parsed manifest, mutated in place.
    identities : Iterable[UpstreamIdentity]
        Upstream identities whose dependencies are rewritten.
    selector : Selector
        New pinning for matched entries.
    git : str | None, optional
        Replacement ``git`` locator for matched entries. Only valid with a
        :class:`GitSelector`.
    exclude : Container[str], optional
        Package names that are never rewritten.
    crates : Mapping[str, Path] | None, optional
        Crate index used by a :class:`PathSelector`. Built from the selector's
        directory when omitted.

    Returns
    -------
    bool
        ``True`` when at least one entry changed.

    Raises
    ------
    SelectorError
        Raised for an invalid selector or a ``git`` override combined with a
        :class:`PathSelector`.
    """
    selector = validate_selector(selector)
    _ensure_git_override_allowed(selector, git)
    identities = tuple(identities)
    if isinstance(selector, PathSelector) and crates is None:
        crates = collect_crates(selector.directory)

    changed = False
    for entry in iter_dependency_entries(manifest):
        if not classify(entry, identities):
            continue
        if entry.package in exclude:
            LOGGER.debug("skipping excluded package %s", entry.package)
            continue
        if isinstance(selector, GitSelector):
            updated = _apply_git_selector(entry, selector, git=git)
        else:
            updated = _apply_path_selector(
                entry,
                manifest.path.parent,
                typ.cast("cabc.Mapping[str, Path]", crates),
            )
        if updated:
            LOGGER.debug(
                "updated [%s] %s in %s", entry.section, entry.name, manifest.path
            )
        changed = changed or updated
    return changed


def _ensure_git_override_allowed(selector: Selector, git: str | None) -> None:
    if git is not None and not isinstance(selector, GitSelector):
        message = "a git locator override requires a branch, tag or rev selector"
        raise SelectorError(message)


def _apply_git_selector(
    entry: DependencyEntry, selector: GitSelector, *, git: str | None
) -> bool:
    fields = typ.cast("cabc.MutableMapping[str, typ.Any]", entry.fields)
    changed = False
    if git is not None and fields.get("git") != git:
        fields["git"] = git
        changed = True

    if entry.selectors == (selector.kind,):
        if fields[selector.kind] == selector.value:
            return changed
        fields[selector.kind] = selector.value
        return True

    _replace_keys(entry, SELECTOR_KEYS, selector.kind, selector.value)
    return True


def _apply_path_selector(
    entry: DependencyEntry,
    manifest_dir: Path,
    crates: cabc.Mapping[str, Path],
) -> bool:
    crate_dir = crates.get(entry.package)
    if crate_dir is None:
        LOGGER.warning(
            "no crate named %s in the local checkout; leaving [%s] %s unchanged",
            entry.package,
            entry.section,
            entry.name,
        )
        return False

    _replace_keys(
        entry, GIT_SOURCE_KEYS, "path", relative_path(crate_dir, manifest_dir)
    )
    return True


def _replace_keys(
    entry: DependencyEntry,
    removed: tuple[str, ...],
    key: str,
    value: str,
) -> None:
    """Drop ``removed`` keys from ``entry`` and set ``key`` to ``value``.

    Inline tables are rebuilt so the new key takes the slot of the first
    removed key; standard tables get the new key appended.
    """
    fields = typ.cast("cabc.MutableMapping[str, typ.Any]", entry.fields)
    if isinstance(fields, InlineTable):
        entry.table[entry.name] = parse_inline_table(
            _replacement_pairs(fields.items(), removed, key, value)
        )
        return

    for name in removed:
        if name in fields:
            del fields[name]
    fields[key] = value


def _replacement_pairs(
    items: cabc.Iterable[tuple[str, object]],
    removed: tuple[str, ...],
    key: str,
    value: str,
) -> list[tuple[str, object]]:
    pairs: list[tuple[str, object]] = []
    inserted = False
    for name, item in items:
        if name not in removed:
            pairs.append((name, item))
        elif not inserted:
            pairs.append((key, value))
            inserted = True
    if not inserted:
        pairs.append((key, value))
    return pairs


def update_manifests(
    root: Path,
    selector: Selector,
    identities: cabc.Iterable[UpstreamIdentity],
    *,
    git: str | None = None,
    exclude: cabc.Container[str] = frozenset(),
) -> UpdateReport:
    """Repin matching dependencies in every manifest below ``root``.

    Each manifest is read, rewritten and, only when something changed,
    atomically replaced. A failure on one manifest is logged and recorded in
    the report; the remaining manifests are still processed. A directory that
    cannot be read stops the search and is recorded the same way, so the
    report still lists the manifests already written.

    Raises
    ------
    FilesystemError
        Raised when ``root`` is missing or is not a directory.
    SelectorError
        Raised before any manifest is touched when the selector is invalid.
    """
    selector = validate_selector(selector)
    _ensure_git_override_allowed(selector, git)
    identities = tuple(identities)
    crates = (
        collect_crates(selector.directory)
        if isinstance(selector, PathSelector)
        else None
    )

    manifests = iter_manifests(root)
    report = UpdateReport()
    try:
        for path in manifests:
            _record_manifest(
                report,
                path,
                identities,
                selector,
                git=git,
                exclude=exclude,
                crates=crates,
            )
    except FilesystemError as error:
        # The walk cannot resume once a directory is unreadable.
        LOGGER.error("stopped searching %s: %s", root, error)
        report.failures.append(ManifestFailure(error.path or Path(root), error))
    return report


def _record_manifest(
    report: UpdateReport,
    path: Path,
    identities: tuple[UpstreamIdentity, ...],
    selector: Selector,
    *,
    git: str | None,
    exclude: cabc.Container[str],
    crates: cabc.Mapping[str, Path] | None,
) -> None:
    LOGGER.debug("processing %s", path)
    try:
        changed = _update_manifest(
            path, identities, selector, git=git, exclude=exclude, crates=crates
        )
    except RepinError as error:
        LOGGER.error("failed to update %s: %s", path, error.message)
        report.failures.append(ManifestFailure(path, error))
        return

    if changed:
        LOGGER.info("updated %s", path)
        report.changed.append(path)
    else:
        report.unchanged.append(path)


def _update_manifest(
    path: Path,
    identities: tuple[UpstreamIdentity, ...],
    selector: Selector,
    *,
    git: str | None,
    exclude: cabc.Container[str],
    crates: cabc.Mapping[str, Path] | None,
) -> bool:
    manifest = load_manifest(path)
    changed = rewrite(
        manifest, identities, selector, git=git, exclude=exclude, crates=crates
    )
    if changed and manifest.modified:
        write_manifest(manifest)
        return True
    return False


def load_exclusions(path: Path) -> frozenset[str]:
    r"""Read the package names listed in the ``[repin-exclude]`` table.

    Entries may be ``name = true`` or a dependency-style inline table whose
    optional ``package`` key names the real package, for example
    ``renamed = { package = "sp-io" }``. Entries set to ``false`` are ignored.

    Raises
    ------
    FilesystemError
        Raised when the file cannot be read.
    ParseError
        Raised when the file is not valid TOML.
    ManifestStructureError
        Raised when ``[repin-exclude]`` is not a table.
    """
    path = Path(path)
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as error:
        message = f"unable to read exclusion file: {error.strerror or error}"
        raise FilesystemError(message, path=path) from error
    except tomllib.TOMLDecodeError as error:
        raise ParseError(str(error), path=path) from error

    table = data.get(EXCLUDE_TABLE)
    if table is None:
        LOGGER.warning("%s has no [%s] table; nothing excluded", path, EXCLUDE_TABLE)
        return frozenset()
    if not isinstance(table, dict):
        message = f"[{EXCLUDE_TABLE}] must be a table"
        raise ManifestStructureError(message, path=path)

    names: set[str] = set()
    for name, spec in table.items():
        if spec is False:
            continue
        if isinstance(spec, dict):
            names.add(str(spec.get("package", name)))
        else:
            names.add(name)
    return frozenset(names)
