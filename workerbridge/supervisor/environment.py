"""
Environment resolution: locate an interpreter and entry script for a worker
environment identity.
"""

# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import os
import shutil
import sys
from collections.abc import Callable, Iterator, Mapping
from dataclasses import asdict, dataclass
from pathlib import Path

from workerbridge.config.models import ResolverConfig
from workerbridge.exceptions import EnvironmentNotFoundError

logger = logging.getLogger(__name__)

PACKAGED_ENV_VAR = "WORKERBRIDGE_PACKAGED"


# ── Descriptor ──────────────────────────────────────────────────


@dataclass(frozen=True)
class EnvironmentDescriptor:
    """A verified interpreter + entry script pair for one environment."""

    id: str
    interpreter_path: str
    entry_script_path: str
    interpreter_home: str | None = None  # relocated standalone interpreters only
    strategy: str = ""

    @property
    def working_dir(self) -> str:
        return str(Path(self.entry_script_path).parent)

    def to_dict(self) -> dict[str, str | None]:
        return asdict(self)


def is_windows(platform: str) -> bool:
    return platform.startswith("win")


def detect_packaged(
    config: ResolverConfig | None = None,
    environ: Mapping[str, str] | None = None,
) -> bool:
    """Decide whether we run from a packaged bundle.

    An explicit ``resolver.packaged`` setting wins; otherwise a frozen
    executable or ``WORKERBRIDGE_PACKAGED=1`` means packaged.
    """
    if config is not None and config.packaged is not None:
        return config.packaged
    if getattr(sys, "frozen", False):
        return True
    env = os.environ if environ is None else environ
    return env.get(PACKAGED_ENV_VAR, "") == "1"


# ── Resolver ──────────────────────────────────────────────────


class EnvironmentResolver:
    """Ordered, first-match-wins search for a worker environment.

    Every candidate is checked for existence (interpreters also for
    executability on POSIX) before it is accepted. Spawning is never
    attempted with an unverified path: when no strategy yields a complete
    descriptor, :class:`EnvironmentNotFoundError` is raised listing
    everything that was tried.
    """

    def __init__(
        self,
        config: ResolverConfig | None = None,
        *,
        resources_root: Path | None = None,
        project_dir: Path | None = None,
        environ: Mapping[str, str] | None = None,
        home: Path | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.config = config or ResolverConfig()
        self._environ = os.environ if environ is None else environ
        self._home = home
        self._which = which

        if resources_root is None and self.config.resources_root:
            resources_root = Path(self.config.resources_root)
        if resources_root is None:
            resources_root = (
                Path(sys.executable).resolve().parent
                if getattr(sys, "frozen", False)
                else Path.cwd()
            )
        if project_dir is None and self.config.project_dir:
            project_dir = Path(self.config.project_dir)
        self.resources_root = resources_root
        self.project_dir = project_dir if project_dir is not None else Path.cwd()

    # ── Public API ────────────────────────────────────────────

    def resolve(
        self,
        environment_id: str,
        packaged: bool,
        platform: str | None = None,
    ) -> EnvironmentDescriptor:
        """Return the first fully valid descriptor for *environment_id*.

        Raises:
            EnvironmentNotFoundError: no strategy produced a verified
                interpreter and entry script.
        """
        platform = platform or sys.platform
        tried: list[str] = []

        if packaged:
            if is_windows(platform):
                strategies = [self._packaged_windows]
            else:
                strategies = [self._packaged_shared_standalone, self._packaged_dedicated]
        else:
            strategies = [self._development]

        for strategy in strategies:
            descriptor = strategy(environment_id, platform, tried)
            if descriptor is not None:
                logger.info(
                    "Resolved environment '%s' via %s: %s %s",
                    environment_id,
                    descriptor.strategy,
                    descriptor.interpreter_path,
                    descriptor.entry_script_path,
                )
                return descriptor

        logger.error(
            "No usable interpreter for environment '%s' (packaged=%s, platform=%s); tried: %s",
            environment_id, packaged, platform, tried,
        )
        raise EnvironmentNotFoundError(environment_id, tried=tried)

    # ── Path checks ───────────────────────────────────────────

    def _accept_file(self, path: Path, tried: list[str]) -> bool:
        tried.append(str(path))
        return path.is_file()

    def _accept_interpreter(self, path: Path, platform: str, tried: list[str]) -> bool:
        tried.append(str(path))
        if not path.is_file():
            return False
        if is_windows(platform):
            return True
        return os.access(path, os.X_OK)

    # ── Packaged layouts ──────────────────────────────────────

    @property
    def _dist_dir(self) -> Path:
        return self.resources_root / self.config.dist_folder

    @property
    def _packaged_entry(self) -> Path:
        return self._dist_dir / self.config.worker_folder / self.config.entry_script

    def _env_folder(self, base: Path, environment_id: str) -> Path:
        return base / f"{environment_id}{self.config.env_folder_suffix}"

    def _packaged_windows(
        self, environment_id: str, platform: str, tried: list[str],
    ) -> EnvironmentDescriptor | None:
        interpreter = self._env_folder(self._dist_dir, environment_id) / "python.exe"
        if not self._accept_interpreter(interpreter, platform, tried):
            return None
        entry = self._packaged_entry
        if not self._accept_file(entry, tried):
            return None
        return EnvironmentDescriptor(
            id=environment_id,
            interpreter_path=str(interpreter),
            entry_script_path=str(entry),
            interpreter_home=str(interpreter.parent),
            strategy="packaged-windows",
        )

    def _packaged_shared_standalone(
        self, environment_id: str, platform: str, tried: list[str],
    ) -> EnvironmentDescriptor | None:
        bin_dir = self._dist_dir / self.config.standalone_folder / "bin"
        launcher = self._dist_dir / self.config.worker_folder / self.config.launcher_script
        for name in self.config.standalone_python_names:
            interpreter = bin_dir / name
            if not self._accept_interpreter(interpreter, platform, tried):
                continue
            if not self._accept_file(launcher, tried):
                return None
            return EnvironmentDescriptor(
                id=environment_id,
                interpreter_path=str(interpreter),
                entry_script_path=str(launcher),
                strategy="packaged-standalone",
            )
        return None

    def _packaged_dedicated(
        self, environment_id: str, platform: str, tried: list[str],
    ) -> EnvironmentDescriptor | None:
        bin_dir = self._env_folder(self._dist_dir, environment_id) / "bin"
        for name in ("python", "python3"):
            interpreter = bin_dir / name
            if not self._accept_interpreter(interpreter, platform, tried):
                continue
            entry = self._packaged_entry
            if not self._accept_file(entry, tried):
                return None
            return EnvironmentDescriptor(
                id=environment_id,
                interpreter_path=str(interpreter),
                entry_script_path=str(entry),
                strategy="packaged-dedicated",
            )
        return None

    # ── Development layout ────────────────────────────────────

    def _development(
        self, environment_id: str, platform: str, tried: list[str],
    ) -> EnvironmentDescriptor | None:
        worker_dir = self.project_dir / self.config.worker_folder
        entry = worker_dir / self.config.entry_script
        if not self._accept_file(entry, tried):
            return None

        launcher = worker_dir / self.config.launcher_script
        script = launcher if launcher.is_file() else entry

        for strategy, interpreter in self._development_interpreters(environment_id, platform):
            if self._accept_interpreter(interpreter, platform, tried):
                return EnvironmentDescriptor(
                    id=environment_id,
                    interpreter_path=str(interpreter),
                    entry_script_path=str(script),
                    strategy=strategy,
                )

        system_name = "python" if is_windows(platform) else "python3"
        tried.append(f"PATH:{system_name}")
        found = self._which(system_name)
        if found:
            logger.warning(
                "Falling back to system interpreter %s for environment '%s'",
                found, environment_id,
            )
            return EnvironmentDescriptor(
                id=environment_id,
                interpreter_path=found,
                entry_script_path=str(script),
                strategy="system",
            )
        return None

    def _development_interpreters(
        self, environment_id: str, platform: str,
    ) -> Iterator[tuple[str, Path]]:
        local_env = self._env_folder(self.project_dir, environment_id)
        if is_windows(platform):
            yield "project-venv", local_env / "python.exe"
            yield "project-venv", local_env / "Scripts" / "python.exe"
        else:
            yield "project-venv", local_env / "bin" / "python"

        base = self._first_conda_base(platform)
        if base is None:
            return
        for env_name in (
            f"{self.config.conda_env_prefix}{environment_id}",
            self.config.conda_shared_env,
        ):
            env_dir = base / env_name
            if is_windows(platform):
                yield "conda", env_dir / "python.exe"
                yield "conda", env_dir / "Scripts" / "python.exe"
            else:
                yield "conda", env_dir / "bin" / "python"

    def conda_base_dirs(self, platform: str) -> list[Path]:
        """Candidate ``envs`` directories, configured ones first."""
        dirs = [Path(d).expanduser() for d in self.config.conda_search_dirs]
        home = self._home or Path.home()
        if is_windows(platform):
            profile = Path(self._environ.get("USERPROFILE", str(home)))
            dirs += [
                profile / "miniconda3" / "envs",
                profile / "anaconda3" / "envs",
                Path("C:/Miniconda3/envs"),
                Path("C:/ProgramData/Miniconda3/envs"),
                Path("C:/Anaconda3/envs"),
            ]
        else:
            dirs += [
                home / "miniconda3" / "envs",
                home / "anaconda3" / "envs",
                Path("/opt/homebrew/miniconda3/envs"),
                Path("/opt/homebrew/anaconda3/envs"),
            ]
            user = self._environ.get("USER")
            if user:
                dirs += [
                    Path("/home") / user / "miniconda3" / "envs",
                    Path("/home") / user / "anaconda3" / "envs",
                ]
        return dirs

    def _first_conda_base(self, platform: str) -> Path | None:
        for candidate in self.conda_base_dirs(platform):
            if candidate.is_dir():
                logger.debug("Using conda envs directory %s", candidate)
                return candidate
        return None
