"""Shared fixtures for manifest repinning tests."""

from __future__ import annotations

import contextlib
import importlib.util
import sys
import typing as typ
from pathlib import Path

import pytest

SCRIPTS_DIR = Path(__file__).resolve().parents[1]
if str(SCRIPTS_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPTS_DIR))

if typ.TYPE_CHECKING:
    from types import ModuleType

RunCallable = typ.Callable[[list[str], int | None], tuple[int, str, str]]


def _load_module_from_scripts(module_name: str) -> ModuleType:
    """Load ``module_name`` from ``scripts`` while guarding against import issues."""
    script_path = SCRIPTS_DIR / f"{module_name}.py"
    spec = importlib.util.spec_from_file_location(module_name, script_path)
    if spec is None or spec.loader is None:  # pragma: no cover - defensive guard
        msg = f"Failed to load module spec for {module_name!r} from {script_path}"
        raise RuntimeError(msg)

    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


@pytest.fixture(scope="module")
def repin_workspace_module() -> ModuleType:
    """Provide the ``repin_workspace`` facade for operation tests."""
    return _load_module_from_scripts("repin_workspace")


@pytest.fixture(scope="module")
def run_repin_module() -> ModuleType:
    """Load ``run_repin`` as a real module for CLI wiring tests."""
    return _load_module_from_scripts("run_repin")


@pytest.fixture
def write_manifest(tmp_path: Path) -> typ.Callable[[str, str], Path]:
    """Return a helper writing ``Cargo.toml`` files below ``tmp_path``."""

    def _write(relative_dir: str, content: str) -> Path:
        directory = tmp_path / relative_dir if relative_dir else tmp_path
        directory.mkdir(parents=True, exist_ok=True)
        manifest = directory / "Cargo.toml"
        manifest.write_text(content, encoding="utf-8")
        return manifest

    return _write


@pytest.fixture
def upstream_checkout(write_manifest: typ.Callable[[str, str], Path]) -> Path:
    """Provision an upstream workspace containing crates ``a`` and ``b``."""
    root = write_manifest(
        "upstream",
        '[workspace]\nmembers = ["crates/a", "crates/b"]\n',
    ).parent
    write_manifest("upstream/crates/a", '[package]\nname = "a"\nversion = "0.1.0"\n')
    write_manifest("upstream/crates/b", '[package]\nname = "b"\nversion = "0.1.0"\n')
    # Build output must never be picked up as a crate.
    write_manifest(
        "upstream/target/package/a-0.1.0",
        '[package]\nname = "a"\nversion = "0.1.0"\n',
    )
    return root


class FakeCargoInvocation:
    """Record a cargo invocation and proxy execution to the fake runner."""

    def __init__(self, local: FakeLocal, args: list[str]) -> None:
        """Store the invocation context for later assertions."""
        self._local = local
        self._args = ["cargo", *args]

    def run(
        self, *, retcode: object | None, timeout: int | None
    ) -> tuple[int, str, str]:
        """Record an invocation and delegate to the configured callable."""
        self._local.invocations.append((self._args, timeout))
        return self._local.run_callable(self._args, timeout)


class FakeCargo:
    """Proxy indexing calls into ``FakeCargoInvocation`` instances."""

    def __init__(self, local: FakeLocal) -> None:
        """Initialise the cargo proxy for a fake local environment."""
        self._local = local

    def __getitem__(self, args: object) -> FakeCargoInvocation:
        """Return an invocation wrapper for the provided command arguments."""
        extras = list(args) if isinstance(args, (list, tuple)) else [str(args)]
        return FakeCargoInvocation(self._local, extras)


class FakeLocal:
    """Mimic the plumbum ``local`` helper for cargo lookups."""

    def __init__(self, run_callable: RunCallable) -> None:
        """Store the callable that will service fake local invocations."""
        self.run_callable = run_callable
        self.cwd_calls: list[Path] = []
        self.invocations: list[tuple[list[str], int | None]] = []

    def __getitem__(self, command: str) -> FakeCargo:
        """Return a ``FakeCargo`` proxy for the ``cargo`` command."""
        if command != "cargo":
            msg = (
                f"FakeLocal only understands the 'cargo' command, received {command!r}"
            )
            raise RuntimeError(msg)
        return FakeCargo(self)

    def cwd(self, path: Path) -> contextlib.AbstractContextManager[None]:
        """Record the working directory change for later assertions."""
        self.cwd_calls.append(path)
        return contextlib.nullcontext()


@pytest.fixture
def patch_local_runner(
    monkeypatch: pytest.MonkeyPatch, repin_workspace_module: ModuleType
) -> typ.Callable[[RunCallable], FakeLocal]:
    """Install a ``FakeLocal`` around the provided callable."""
    import repin_patch

    def _install(run_callable: RunCallable) -> FakeLocal:
        fake_local = FakeLocal(run_callable)
        monkeypatch.setattr(repin_patch, "local", fake_local)
        monkeypatch.setattr(repin_workspace_module, "local", fake_local)
        return fake_local

    return _install
