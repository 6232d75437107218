"""Tests for manifest discovery and crate indexing."""

from __future__ import annotations

import typing as typ

import pytest
from repin_errors import FilesystemError, ManifestStructureError, ParseError
from repin_locate import collect_crates, iter_manifests, relative_path

if typ.TYPE_CHECKING:
    from pathlib import Path

WriteManifest = typ.Callable[[str, str], "Path"]


def test_iter_manifests_orders_results_and_prunes_generated_dirs(
    tmp_path: Path, write_manifest: WriteManifest
) -> None:
    """Yield parents before children and skip build, vendor and hidden dirs."""
    for relative in ("", "b", "a", "a/nested", "target", "vendor/x", ".git/x"):
        write_manifest(relative, "[workspace]\n")

    found = [
        path.relative_to(tmp_path).as_posix() for path in iter_manifests(tmp_path)
    ]

    assert found == [
        "Cargo.toml",
        "a/Cargo.toml",
        "a/nested/Cargo.toml",
        "b/Cargo.toml",
    ]


def test_iter_manifests_is_repeatable(
    tmp_path: Path, write_manifest: WriteManifest
) -> None:
    """Return the same sequence on every walk of an unchanged tree."""
    for relative in ("z", "m/k", "a"):
        write_manifest(relative, "[workspace]\n")

    assert list(iter_manifests(tmp_path)) == list(iter_manifests(tmp_path))


def test_iter_manifests_rejects_missing_root(tmp_path: Path) -> None:
    """Raise before iteration starts when the root does not exist."""
    missing = tmp_path / "missing"

    with pytest.raises(FilesystemError, match="does not exist") as excinfo:
        iter_manifests(missing)

    assert excinfo.value.path == missing


def test_iter_manifests_rejects_file_root(tmp_path: Path) -> None:
    """Treat a regular file as an unusable search root."""
    not_a_dir = tmp_path / "file.txt"
    not_a_dir.write_text("", encoding="utf-8")

    with pytest.raises(FilesystemError, match="not a directory"):
        iter_manifests(not_a_dir)


def test_collect_crates_maps_packages_to_directories(
    upstream_checkout: Path,
) -> None:
    """Index package manifests and ignore the virtual workspace manifest."""
    crates = collect_crates(upstream_checkout)

    assert crates == {
        "a": upstream_checkout / "crates" / "a",
        "b": upstream_checkout / "crates" / "b",
    }


def test_collect_crates_reports_duplicate_names(
    tmp_path: Path, write_manifest: WriteManifest
) -> None:
    """Refuse to index two crates that share a package name."""
    write_manifest("one", '[package]\nname = "dup"\n')
    write_manifest("two", '[package]\nname = "dup"\n')

    with pytest.raises(ManifestStructureError, match="duplicate crate names") as excinfo:
        collect_crates(tmp_path)

    assert "'dup'" in str(excinfo.value)


def test_collect_crates_reports_unparseable_manifests(
    tmp_path: Path, write_manifest: WriteManifest
) -> None:
    """Surface TOML errors together with the offending manifest."""
    broken = write_manifest("broken", "[package\n")

    with pytest.raises(ParseError) as excinfo:
        collect_crates(tmp_path)

    assert excinfo.value.path == broken


def test_relative_path_uses_forward_slashes(tmp_path: Path) -> None:
    """Render paths relative to the manifest directory in POSIX form."""
    target = tmp_path / "upstream" / "crates" / "a"
    base = tmp_path / "consumer" / "nested"

    assert relative_path(target, base) == "../../upstream/crates/a"
