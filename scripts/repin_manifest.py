"""Order-preserving manifest model used by the repinning helpers.

Manifests are held as :mod:`tomlkit` documents so that edits touch only the
targeted nodes while comments, key order and whitespace elsewhere are copied
through unchanged. The module also walks the dependency tables of a manifest
and exposes each entry as a :class:`DependencyEntry`.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import typing as typ
from pathlib import Path

from repin_errors import FilesystemError, ParseError
from tomlkit import dumps, item, parse
from tomlkit.exceptions import ParseError as TomlParseError
from tomlkit.items import InlineTable, Item, SingleKey

if typ.TYPE_CHECKING:
    from tomlkit.toml_document import TOMLDocument

__all__ = [
    "DEPENDENCY_SECTIONS",
    "SELECTOR_KEYS",
    "DependencyEntry",
    "Manifest",
    "declares_workspace",
    "iter_dependency_entries",
    "load_manifest",
    "package_name",
    "parse_inline_table",
    "parse_manifest",
]

DEPENDENCY_SECTIONS: typ.Final[tuple[str, ...]] = (
    "dependencies",
    "dev-dependencies",
    "build-dependencies",
)

SELECTOR_KEYS: typ.Final[tuple[str, ...]] = ("branch", "tag", "rev")

SourceKind = typ.Literal["git", "path", "registry", "workspace"]


@dc.dataclass
class Manifest:
    """A parsed manifest together with the text it was read from."""

    path: Path
    text: str
    document: TOMLDocument

    def render(self) -> str:
        """Serialise the document, including any in-memory edits."""
        return dumps(self.document)

    @property
    def modified(self) -> bool:
        """Return ``True`` when the rendered document differs from disk."""
        return self.render() != self.text


@dc.dataclass(frozen=True)
class DependencyEntry:
    """One dependency declaration inside a manifest dependency table."""

    section: str
    name: str
    table: cabc.MutableMapping[str, typ.Any]

    @property
    def value(self) -> object:
        """Return the live declaration stored in the owning table."""
        return self.table[self.name]

    @property
    def fields(self) -> cabc.MutableMapping[str, typ.Any] | None:
        """Return the declaration when it is a table, otherwise ``None``."""
        value = self.value
        if isinstance(value, cabc.MutableMapping):
            return typ.cast("cabc.MutableMapping[str, typ.Any]", value)
        return None

    @property
    def package(self) -> str:
        """Return the real package name, honouring ``package = "..."`` renames."""
        fields = self.fields
        if fields is not None:
            renamed = fields.get("package")
            if isinstance(renamed, str):
                return str(renamed)
        return self.name

    @property
    def git(self) -> str | None:
        """Return the git locator of a git-sourced entry."""
        fields = self.fields
        if fields is None:
            return None
        locator = fields.get("git")
        return str(locator) if isinstance(locator, str) else None

    @property
    def source_kind(self) -> SourceKind:
        """Classify where the dependency is fetched from."""
        fields = self.fields
        if fields is None:
            return "registry"
        if "git" in fields:
            return "git"
        if "path" in fields:
            return "path"
        if fields.get("workspace") is True:
            return "workspace"
        return "registry"

    @property
    def selectors(self) -> tuple[str, ...]:
        """Return the pinning selector keys present on the entry."""
        fields = self.fields
        if fields is None:
            return ()
        return tuple(key for key in SELECTOR_KEYS if key in fields)


def parse_manifest(text: str, path: Path) -> Manifest:
    """Parse ``text`` read from ``path`` into a :class:`Manifest`.

    Raises
    ------
    ParseError
        Raised when ``text`` is not valid TOML. The message carries tomlkit's
        description including the line and column.
    """
    path = Path(path)
    try:
        document = parse(text)
    except TomlParseError as error:
        raise ParseError(str(error), path=path) from error
    return Manifest(path=path, text=text, document=document)


def load_manifest(path: Path) -> Manifest:
    """Read and parse the manifest stored at ``path``, keeping its line endings."""
    path = Path(path)
    try:
        with path.open(encoding="utf-8", newline="") as handle:
            text = handle.read()
    except OSError as error:
        message = f"unable to read manifest: {error.strerror or error}"
        raise FilesystemError(message, path=path) from error
    return parse_manifest(text, path)


def package_name(manifest: Manifest) -> str | None:
    """Return ``[package].name`` or ``None`` for virtual manifests."""
    package = manifest.document.get("package")
    if not isinstance(package, cabc.Mapping):
        return None
    name = package.get("name")
    return str(name) if isinstance(name, str) else None


def declares_workspace(manifest: Manifest) -> bool:
    """Return ``True`` when the manifest carries a ``[workspace]`` table."""
    return isinstance(manifest.document.get("workspace"), cabc.MutableMapping)


def iter_dependency_entries(manifest: Manifest) -> cabc.Iterator[DependencyEntry]:
    """Yield the entries of every dependency table, one table at a time.

    Top-level dependency tables come first, then ``[workspace.dependencies]``
    and finally the dependency tables nested under ``[target.<cfg>]``. Entries
    within a table keep their document order.
    """
    for section, table in _iter_dependency_tables(manifest.document):
        for name in list(table):
            yield DependencyEntry(section=section, name=name, table=table)


def _iter_dependency_tables(
    document: TOMLDocument,
) -> cabc.Iterator[tuple[str, cabc.MutableMapping[str, typ.Any]]]:
    yield from _dependency_tables_of(document, prefix="")

    workspace = document.get("workspace")
    if isinstance(workspace, cabc.MutableMapping):
        dependencies = workspace.get("dependencies")
        if isinstance(dependencies, cabc.MutableMapping):
            yield "workspace.dependencies", dependencies

    targets = document.get("target")
    if not isinstance(targets, cabc.MutableMapping):
        return
    for cfg, platform in targets.items():
        if isinstance(platform, cabc.MutableMapping):
            yield from _dependency_tables_of(platform, prefix=f"target.{cfg}.")


def _dependency_tables_of(
    container: cabc.MutableMapping[str, typ.Any], *, prefix: str
) -> cabc.Iterator[tuple[str, cabc.MutableMapping[str, typ.Any]]]:
    for section in DEPENDENCY_SECTIONS:
        table = container.get(section)
        if isinstance(table, cabc.MutableMapping):
            yield f"{prefix}{section}", table


def parse_inline_table(pairs: cabc.Iterable[tuple[str, object]]) -> InlineTable:
    r"""Build an inline table rendered in the conventional Cargo style.

    Existing tomlkit items keep their original rendering (quoting, arrays);
    plain Python values are converted with :func:`tomlkit.item`.

    Examples
    --------
    >>> parse_inline_table((("path", "../a"),)).as_string()
    '{ path = "../a" }'
    """
    rendered = ", ".join(
        f"{SingleKey(key).as_string()} = {_render_value(value)}"
        for key, value in pairs
    )
    text = f"{{ {rendered} }}" if rendered else "{}"
    return typ.cast("InlineTable", parse(f"entry = {text}\n")["entry"])


def _render_value(value: object) -> str:
    if isinstance(value, Item):
        return value.as_string()
    return item(value).as_string()
