#!/usr/bin/env -S uv run python
"""Command-line entry point for repinning Cargo git dependencies.

Two commands are provided. ``update`` rewrites every ``Cargo.toml`` below a
directory so dependencies on an upstream repository use a different branch,
tag, revision or local checkout. ``patch`` adds a ``[patch]`` section for each
crate of a local upstream checkout to a consuming workspace manifest.

Options can also be supplied through ``CARGO_REPIN_*`` environment variables,
for example ``CARGO_REPIN_PATH`` and ``CARGO_REPIN_LOG_LEVEL``.

Examples
--------
Switch all Substrate dependencies to a branch::

    python scripts/run_repin.py update --identity substrate --branch my-branch

Build a workspace against a local Polkadot SDK checkout::

    python scripts/run_repin.py patch --crates-to-patch ../polkadot-sdk
"""

# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "cyclopts>=2.9,<4",
#     "plumbum",
#     "tomlkit",
# ]
# ///
from __future__ import annotations

import logging
import typing as typ
from pathlib import Path

import cyclopts
from cyclopts import App, Parameter
from repin_errors import RepinError
from repin_patch import CARGO_LOCATE_TIMEOUT_S
from repin_update import make_selector
from repin_workspace import patch as patch_workspace
from repin_workspace import update as update_workspace

if typ.TYPE_CHECKING:
    from repin_update import UpdateReport

LOGGER = logging.getLogger(__name__)

LogLevel = typ.Literal["DEBUG", "INFO", "WARNING", "ERROR"]

LOG_FORMAT: typ.Final[str] = "%(levelname)s %(name)s: %(message)s"

app = App(
    name="cargo-repin",
    help="Repin Cargo git dependencies and patch workspaces against checkouts.",
    config=cyclopts.config.Env("CARGO_REPIN_", command=False),
)


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _fail(action: str, error: RepinError) -> typ.NoReturn:
    """Log ``error`` and abort with a message naming the failing path."""
    LOGGER.error("%s failed: %s", action, error)
    message = f"{action} failed: {error}"
    raise SystemExit(message) from error


def _report_update(report: UpdateReport) -> None:
    """Summarise ``report`` and abort when any manifest failed."""
    LOGGER.info(
        "%d manifest(s) updated, %d unchanged",
        len(report.changed),
        len(report.unchanged),
    )
    if report.succeeded:
        return

    details = "\n".join(
        f"  {failure.path}: {failure.error.message}" for failure in report.failures
    )
    message = f"failed to update {len(report.failures)} manifest(s):\n{details}"
    raise SystemExit(message)


@app.command
def update(
    *,
    path: typ.Annotated[Path | None, Parameter(env_var="CARGO_REPIN_PATH")] = None,
    identity: list[str] | None = None,
    branch: str | None = None,
    tag: str | None = None,
    rev: str | None = None,
    local_path: Path | None = None,
    git: str | None = None,
    exclude: Path | None = None,
    log_level: typ.Annotated[
        LogLevel, Parameter(env_var="CARGO_REPIN_LOG_LEVEL")
    ] = "INFO",
) -> None:
    """Repin dependencies in every ``Cargo.toml`` below ``path``.

    Parameters
    ----------
    path : Path | None, optional
        Directory searched for manifests; defaults to the working directory.
    identity : list[str] | None, optional
        Upstream identities to rewrite (``substrate``, ``polkadot``,
        ``cumulus``, ``beefy``, ``polkadot-sdk`` or a git URL). Defaults to all
        of the named identities.
    branch : str | None, optional
        Branch the dependencies should use.
    tag : str | None, optional
        Tag the dependencies should use.
    rev : str | None, optional
        Revision the dependencies should use.
    local_path : Path | None, optional
        Local checkout the dependencies should point at via ``path``.
    git : str | None, optional
        Rewrite the ``git`` URL of matched dependencies.
    exclude : Path | None, optional
        TOML file listing packages to skip in a ``[repin-exclude]`` table.
    log_level : LogLevel, optional
        Logging verbosity.
    """
    _configure_logging(log_level)
    root = path if path is not None else Path.cwd()
    try:
        selector = make_selector(branch=branch, tag=tag, rev=rev, path=local_path)
        report = update_workspace(
            root,
            selector,
            identity,
            git=git,
            exclude_file=exclude,
        )
    except RepinError as error:
        _fail("update", error)
    _report_update(report)


@app.command
def patch(
    *,
    crates_to_patch: Path,
    path: typ.Annotated[Path | None, Parameter(env_var="CARGO_REPIN_PATH")] = None,
    identity: str | None = None,
    crates_io: bool = False,
    target: str | None = None,
    point_to_git: str | None = None,
    point_to_git_branch: str | None = None,
    point_to_git_commit: str | None = None,
    cargo_timeout_secs: typ.Annotated[
        int, Parameter(env_var="CARGO_REPIN_CARGO_TIMEOUT_SECS")
    ] = CARGO_LOCATE_TIMEOUT_S,
    log_level: typ.Annotated[
        LogLevel, Parameter(env_var="CARGO_REPIN_LOG_LEVEL")
    ] = "INFO",
) -> None:
    """Patch a workspace to build every crate of a local checkout.

    Parameters
    ----------
    crates_to_patch : Path
        Local checkout whose crates are added to the patch section.
    path : Path | None, optional
        Workspace ``Cargo.toml`` or a directory inside the workspace; defaults
        to the working directory.
    identity : str | None, optional
        Upstream identity or git URL used as the patch source. Defaults to the
        Polkadot SDK repository.
    crates_io : bool, optional
        Patch ``crates-io`` instead of a git source.
    target : str | None, optional
        Custom patch source key, written as ``[patch.TARGET]``.
    point_to_git : str | None, optional
        Point the patches at this git repository instead of local paths.
    point_to_git_branch : str | None, optional
        Branch used with ``point_to_git``.
    point_to_git_commit : str | None, optional
        Commit used with ``point_to_git``.
    cargo_timeout_secs : int, optional
        Timeout for ``cargo locate-project``.
    log_level : LogLevel, optional
        Logging verbosity.
    """
    _configure_logging(log_level)
    if cargo_timeout_secs <= 0:
        message = "cargo-timeout-secs must be a positive integer"
        raise SystemExit(message)

    target_path = path if path is not None else Path.cwd()
    try:
        changed = patch_workspace(
            crates_to_patch,
            target_path,
            (identity,) if identity is not None else None,
            crates_io=crates_io,
            target_key=target,
            point_to_git=point_to_git,
            point_to_git_branch=point_to_git_branch,
            point_to_git_commit=point_to_git_commit,
            timeout_secs=cargo_timeout_secs,
        )
    except RepinError as error:
        _fail("patch", error)
    if not changed:
        LOGGER.info("patch section already up to date")


if __name__ == "__main__":
    app()
