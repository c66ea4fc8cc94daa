"""
Runner settings

Defaults live in this module. `runner.yaml` (from SOLUTION_RUNNER_CONFIG_DIR,
or the packaged solution_runner/config directory) overrides them, and a few
environment variables override the YAML. A `.env` next to the package is
loaded first without clobbering variables that are already set.

Public API
----------
- load_settings(config_dir: Path | str | None = None) -> RunnerSettings
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv


_DEF_NOISE: tuple[str, ...] = (
    "build/",
    "target/",
    ".idea/",
    "__MACOSX/",
    ".DS_Store",
    "Thumbs.db",
    ".git/",
)

# Order matters: the first matching prefix wins.
_DEF_ROOT_PREFIXES: tuple[str, ...] = (
    "default-structure/",
    "task1/default-structure/",
)

_DEF_WRAPPERS: tuple[str, ...] = ("gradlew", "gradlew.bat", "gradlew.sh")

# Decoder messages that mean "try another strategy" rather than "give up".
_DEF_RECOVERABLE: tuple[str, ...] = (
    "EXT descriptor",
    "DEFLATED",
    "File is not a zip file",
    "Bad CRC-32",
    "Bad magic number",
    "Truncated file header",
    "Truncated file data",
    "Error -3 while decompressing",
    "Compressed file ended before",
    "Overlapped entries",
)


@dataclass(frozen=True)
class RunnerSettings:
    noise_patterns: tuple[str, ...] = _DEF_NOISE
    root_prefixes: tuple[str, ...] = _DEF_ROOT_PREFIXES
    wrapper_names: tuple[str, ...] = _DEF_WRAPPERS
    recoverable_signatures: tuple[str, ...] = _DEF_RECOVERABLE
    gradle_task: str = "runTests"
    gradle_commands: tuple[str, ...] = ("gradle", "/opt/gradle/bin/gradle")
    gradle_cache_dir: str = "/gradle-cache"
    build_dir: str = "build"
    result_file: str = "jikvict-results.json"
    results_path: str = "jikvict-results.json"
    timeout_seconds: float = 300.0
    grace_seconds: float = 5.0
    unzip_command: str = "unzip"
    verbose: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def project_marker(self) -> str:
        """File whose presence marks a directory as the project root."""
        return self.wrapper_names[0]


def _package_root() -> Path:
    """…/solution_runner"""
    return Path(__file__).resolve().parents[1]


def _config_dir(override: Optional[Path | str] = None) -> Path:
    if override:
        return Path(override)
    env = os.environ.get("SOLUTION_RUNNER_CONFIG_DIR")
    if env:
        return Path(env)
    return _package_root() / "config"


def _as_tuple(value: Any, fallback: tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(value, str) and value.strip():
        return (value.strip(),)
    if isinstance(value, (list, tuple)):
        items = tuple(str(v) for v in value if str(v).strip())
        return items or fallback
    return fallback


def _truthy(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _from_yaml(base: RunnerSettings, cfg_path: Path) -> RunnerSettings:
    if not cfg_path.exists():
        return base
    data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{cfg_path} must contain a mapping, got {type(data).__name__}")

    extraction = data.get("extraction") or {}
    gradle = data.get("gradle") or {}
    results = data.get("results") or {}

    known = {"extraction", "gradle", "results", "timeout_seconds", "grace_seconds", "verbose"}
    return replace(
        base,
        noise_patterns=_as_tuple(extraction.get("noise_patterns"), base.noise_patterns),
        root_prefixes=_as_tuple(extraction.get("root_prefixes"), base.root_prefixes),
        wrapper_names=_as_tuple(extraction.get("wrapper_names"), base.wrapper_names),
        recoverable_signatures=_as_tuple(extraction.get("recoverable_signatures"), base.recoverable_signatures),
        unzip_command=str(extraction.get("unzip_command") or base.unzip_command),
        gradle_task=str(gradle.get("task") or base.gradle_task),
        gradle_commands=_as_tuple(gradle.get("commands"), base.gradle_commands),
        gradle_cache_dir=str(gradle.get("cache_dir") or base.gradle_cache_dir),
        build_dir=str(results.get("build_dir") or base.build_dir),
        result_file=str(results.get("file_name") or base.result_file),
        results_path=str(results.get("destination") or base.results_path),
        timeout_seconds=float(data.get("timeout_seconds") or base.timeout_seconds),
        grace_seconds=float(data.get("grace_seconds") or base.grace_seconds),
        verbose=bool(data.get("verbose", base.verbose)),
        extra={k: v for k, v in data.items() if k not in known},
    )


def _from_env(base: RunnerSettings) -> RunnerSettings:
    env = os.environ
    overrides: Dict[str, Any] = {}
    if env.get("GRADLE_USER_HOME"):
        overrides["gradle_cache_dir"] = env["GRADLE_USER_HOME"]
    if env.get("SOLUTION_RUNNER_TIMEOUT"):
        overrides["timeout_seconds"] = float(env["SOLUTION_RUNNER_TIMEOUT"])
    if env.get("SOLUTION_RUNNER_RESULTS"):
        overrides["results_path"] = env["SOLUTION_RUNNER_RESULTS"]
    if env.get("SOLUTION_RUNNER_UNZIP"):
        overrides["unzip_command"] = env["SOLUTION_RUNNER_UNZIP"]
    if env.get("SOLUTION_RUNNER_VERBOSE"):
        overrides["verbose"] = _truthy(env["SOLUTION_RUNNER_VERBOSE"])
    return replace(base, **overrides) if overrides else base


def load_settings(config_dir: Optional[Path | str] = None) -> RunnerSettings:
    """Defaults → runner.yaml → environment."""
    load_dotenv(_package_root() / ".env", override=False)
    settings = _from_yaml(RunnerSettings(), _config_dir(config_dir) / "runner.yaml")
    return _from_env(settings)


DEFAULT_SETTINGS = RunnerSettings()

__all__ = ["RunnerSettings", "DEFAULT_SETTINGS", "load_settings"]
