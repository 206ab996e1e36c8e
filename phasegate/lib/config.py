"""
Configuration loaders for phasegate.

Engine settings come from <root>/phasegate.env. A missing file means
defaults; a malformed file is an error.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from . import envparse
from .constants import REVIEW_MODE_SINGLE, VALID_REVIEW_MODES

logger = logging.getLogger(__name__)

ROOT_ENV_VAR = "PHASEGATE_ROOT"
ACTOR_ENV_VAR = "PHASEGATE_ACTOR"
DEFAULT_ROOT_NAME = ".phasegate"
CONFIG_FILENAME = "phasegate.env"


@dataclass
class EngineConfig:
    """Engine-level configuration from phasegate.env"""
    root: Path
    review_mode: str = REVIEW_MODE_SINGLE  # Applied to features at creation
    lock_timeout: float = 30.0  # Seconds to wait for a workspace lock
    notify_desktop: bool = False
    default_reviewer: str = ""  # Used when --reviewer is omitted
    log_level: str = "WARNING"


def resolve_root(explicit: str | None = None) -> Path:
    """Resolve the engine root: --root, then $PHASEGATE_ROOT, then ./.phasegate"""
    if explicit:
        return Path(explicit)
    from_env = os.environ.get(ROOT_ENV_VAR)
    if from_env:
        return Path(from_env)
    return Path.cwd() / DEFAULT_ROOT_NAME


def load_engine_config(root: Path) -> EngineConfig:
    """Load phasegate.env from root and return EngineConfig."""
    config_path = root / CONFIG_FILENAME
    if not config_path.exists():
        return EngineConfig(root=root)

    env = envparse.load_env(config_path)

    review_mode = env.get("REVIEW_MODE", REVIEW_MODE_SINGLE).lower()
    if review_mode not in VALID_REVIEW_MODES:
        logger.warning(
            f"Unknown REVIEW_MODE '{review_mode}' in {config_path}, using '{REVIEW_MODE_SINGLE}'"
        )
        review_mode = REVIEW_MODE_SINGLE

    try:
        lock_timeout = float(env.get("LOCK_TIMEOUT", "30"))
    except ValueError:
        raise ValueError(f"{config_path}: LOCK_TIMEOUT must be a number") from None

    return EngineConfig(
        root=root,
        review_mode=review_mode,
        lock_timeout=lock_timeout,
        notify_desktop=envparse.parse_bool(env.get("NOTIFY_DESKTOP"), default=False),
        default_reviewer=env.get("DEFAULT_REVIEWER", ""),
        log_level=env.get("LOG_LEVEL", "WARNING").upper(),
    )


def get_current_feature(root: Path) -> str | None:
    """Get the current feature ID from context, or None if not set.

    Auto-clears stale context if the feature no longer exists.
    """
    context_file = root / "config" / "current_feature"
    if context_file.exists():
        feature_id = context_file.read_text().strip()
        if feature_id:
            if (root / "features" / feature_id / "feature.json").exists():
                return feature_id
            context_file.unlink()
    return None


def set_current_feature(root: Path, feature_id: str) -> None:
    """Set the current feature context."""
    config_dir = root / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "current_feature").write_text(feature_id + "\n")


def clear_current_feature(root: Path) -> None:
    """Clear the current feature context."""
    context_file = root / "config" / "current_feature"
    if context_file.exists():
        context_file.unlink()
