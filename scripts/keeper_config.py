"""Keeper configuration and console logging.

Settings come from environment variables first and from an optional
``keeper.json`` inside the data directory second.  Log lines go to stderr so
the CLI can keep stdout for its JSON replies.
"""
from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

# =====================================================
# CONFIGURATION
# =====================================================

DEFAULT_DIR_NAME = ".keeper"
CONFIG_FILE_NAME = "keeper.json"
CURRENT_DOCUMENT = "current.md"
HISTORY_DIR = "history"
ARCHIVE_PREFIX = "archive-"
DEFAULT_WATCH_INTERVAL = 1.0
DEFAULT_BRANCH = "main"
GITHUB_API_URL = "https://api.github.com"


def truthy_env(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off", ""}


def debug_enabled() -> bool:
    return truthy_env(os.getenv("KEEPER_DEBUG"))


def debug_log(*parts: object) -> None:
    if debug_enabled():
        print("[DEBUG]", *parts, file=sys.stderr)


def info_log(*parts: object) -> None:
    print("[INFO]", *parts, file=sys.stderr)


def warn_log(*parts: object) -> None:
    print("[WARN]", *parts, file=sys.stderr)


def default_data_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if env is None else env
    configured = env.get("KEEPER_DIR")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / DEFAULT_DIR_NAME


def load_config_file(data_dir: Path) -> Dict[str, Any]:
    """Load ``keeper.json`` if present; a broken file counts as empty."""
    path = data_dir / CONFIG_FILE_NAME
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as exc:
        warn_log(f"Ignoring unreadable config {path}: {exc}")
        return {}
    return data if isinstance(data, dict) else {}


@dataclass
class GitHubSettings:
    repo: str = ""
    branch: str = DEFAULT_BRANCH
    token: str = ""
    path_prefix: str = ""
    api_url: str = GITHUB_API_URL

    @property
    def enabled(self) -> bool:
        return bool(self.repo)


@dataclass
class KeeperConfig:
    data_dir: Path
    watch_interval: float = DEFAULT_WATCH_INTERVAL
    archive_guard: bool = True
    github: GitHubSettings = field(default_factory=GitHubSettings)


def load_config(env: Optional[Mapping[str, str]] = None) -> KeeperConfig:
    env = os.environ if env is None else env
    data_dir = default_data_dir(env)
    file_cfg = load_config_file(data_dir)

    watch_interval = DEFAULT_WATCH_INTERVAL
    raw_interval = env.get("KEEPER_WATCH_INTERVAL", file_cfg.get("watch_interval"))
    if raw_interval is not None:
        try:
            watch_interval = max(float(raw_interval), 0.05)
        except (TypeError, ValueError):
            warn_log(f"Invalid watch interval {raw_interval!r}; using {DEFAULT_WATCH_INTERVAL}s")

    github_cfg = file_cfg.get("github") or {}
    github = GitHubSettings(
        repo=env.get("KEEPER_GITHUB_REPO", github_cfg.get("repo", "")),
        branch=env.get("KEEPER_GITHUB_BRANCH", github_cfg.get("branch", DEFAULT_BRANCH)),
        token=env.get("GITHUB_TOKEN", ""),
        path_prefix=github_cfg.get("path_prefix", ""),
        api_url=github_cfg.get("api_url", GITHUB_API_URL),
    )
    return KeeperConfig(
        data_dir=data_dir,
        watch_interval=watch_interval,
        archive_guard=truthy_env(env.get("KEEPER_ARCHIVE_GUARD"), bool(file_cfg.get("archive_guard", True))),
        github=github,
    )
