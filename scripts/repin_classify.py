"""Upstream identity matching for git-sourced dependencies.

An upstream identity recognises dependencies by the trailing repository
segment of their ``git`` locator. The default identity set covers the Polkadot
SDK project family; callers may also name ad-hoc repositories or pass a git URL
directly.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import typing as typ

from repin_errors import SelectorError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from repin_manifest import DependencyEntry

__all__ = [
    "DEFAULT_IDENTITIES",
    "UpstreamIdentity",
    "classify",
    "repository_name",
    "resolve_identities",
]

LOGGER = logging.getLogger(__name__)


@dc.dataclass(frozen=True)
class UpstreamIdentity:
    """Match git locators whose final path segment equals ``repository``.

    Parameters
    ----------
    name : str
        Name used to select the identity in filters.
    repository : str
        Repository segment compared against dependency git locators.
    locator : str | None
        Canonical git URL of the upstream, used as the ``[patch]`` key.
    """

    name: str
    repository: str
    locator: str | None = None

    def matches(self, git: str) -> bool:
        """Return ``True`` when ``git`` points at this upstream repository."""
        return repository_name(git) == self.repository


def _github(repository: str) -> str:
    return f"https://github.com/paritytech/{repository}"


DEFAULT_IDENTITIES: typ.Final[tuple[UpstreamIdentity, ...]] = (
    UpstreamIdentity("substrate", "substrate", _github("substrate")),
    UpstreamIdentity("polkadot", "polkadot", _github("polkadot")),
    UpstreamIdentity("cumulus", "cumulus", _github("cumulus")),
    UpstreamIdentity(
        "beefy", "grandpa-bridge-gadget", _github("grandpa-bridge-gadget")
    ),
    UpstreamIdentity("polkadot-sdk", "polkadot-sdk", _github("polkadot-sdk")),
)


def repository_name(git: str) -> str:
    """Return the trailing repository segment of a git locator.

    Query strings, fragments, trailing slashes and a ``.git`` suffix are
    ignored. Both URL and scp-like (``git@host:org/repo``) forms are handled.

    Examples
    --------
    >>> repository_name("https://github.com/paritytech/substrate.git")
    'substrate'
    >>> repository_name("git@github.com:paritytech/polkadot-sdk/")
    'polkadot-sdk'
    """
    locator = git.strip()
    for marker in ("#", "?"):
        locator = locator.split(marker, 1)[0]
    locator = locator.rstrip("/")
    locator = locator.removesuffix(".git")
    segment = locator.replace(":", "/").rsplit("/", 1)[-1]
    return segment


def classify(
    entry: DependencyEntry, identities: cabc.Iterable[UpstreamIdentity]
) -> bool:
    """Return ``True`` when ``entry`` is git-sourced from one of ``identities``."""
    if entry.source_kind != "git":
        return False
    git = entry.git
    if git is None:
        return False
    return any(identity.matches(git) for identity in identities)


def resolve_identities(
    identity_filter: cabc.Iterable[str] | None,
) -> tuple[UpstreamIdentity, ...]:
    """Turn caller-supplied filter names into identities.

    Parameters
    ----------
    identity_filter : Iterable[str] | None
        Default identity names, git URLs or bare repository names. ``None``
        or an empty iterable selects :data:`DEFAULT_IDENTITIES` so the whole
        project family is matched.

    Returns
    -------
    tuple[UpstreamIdentity, ...]
        Identities in filter order with duplicates removed.

    Raises
    ------
    SelectorError
        Raised when a filter entry is blank or has no repository segment.
    """
    names = tuple(identity_filter or ())
    if not names:
        return DEFAULT_IDENTITIES

    known = {identity.name: identity for identity in DEFAULT_IDENTITIES}
    resolved: list[UpstreamIdentity] = []
    for raw in names:
        name = raw.strip()
        identity = known.get(name) or _adhoc_identity(name)
        if identity not in resolved:
            resolved.append(identity)
    LOGGER.debug(
        "matching repositories: %s",
        ", ".join(identity.repository for identity in resolved),
    )
    return tuple(resolved)


def _adhoc_identity(name: str) -> UpstreamIdentity:
    repository = repository_name(name) if name else ""
    if not repository:
        message = f"invalid upstream identity {name!r}"
        raise SelectorError(message)
    if "/" in name or ":" in name:
        return UpstreamIdentity(repository, repository, name)
    return UpstreamIdentity(name, repository)
