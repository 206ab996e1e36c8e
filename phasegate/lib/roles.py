"""
Role catalogue and named pipelines.

Loads roles.yaml from the engine root to describe the roles a feature may
route work through and to name common phase sequences. If no file exists,
the built-in catalogue below is used.

Example roles.yaml:

    roles:
      spec: Writes failing tests and acceptance criteria
      build: Implements business logic until the tests pass
    pipelines:
      tdd: [spec, build]
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from phasegate.lib.constants import COORDINATOR, ROLE_ID_PATTERN

logger = logging.getLogger(__name__)


DEFAULT_ROLES = {
    "planning": "Breaks the feature down and writes the PRD",
    "spec": "Writes the test suite and interface contracts (tests first)",
    "build": "Implements business logic until the tests pass",
    "data": "Owns schema, migrations and data-access policies",
    "presentation": "Builds the UI against the approved interfaces",
}

DEFAULT_PIPELINES = {
    "full": ["planning", "spec", "build", "data", "presentation"],
    "tdd": ["spec", "build"],
}


@dataclass
class RoleCatalog:
    """Known roles and named pipelines from roles.yaml."""
    roles: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ROLES))
    pipelines: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_PIPELINES.items()}
    )

    def pipeline(self, name: str) -> list[str]:
        """Return the phase sequence for a named pipeline.

        Raises:
            KeyError: if the pipeline is unknown
        """
        if name not in self.pipelines:
            raise KeyError(f"Unknown pipeline '{name}' (known: {', '.join(sorted(self.pipelines))})")
        return list(self.pipelines[name])

    def describe(self, role: str) -> str:
        return self.roles.get(role, "")


def load_role_catalog(root: Path | None) -> RoleCatalog:
    """Load roles.yaml and return RoleCatalog.

    If root is None or the file doesn't exist, returns defaults. Entries with
    invalid role ids are skipped with a warning.
    """
    if root is None:
        return RoleCatalog()

    config_path = root / "roles.yaml"
    if not config_path.exists():
        return RoleCatalog()

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return RoleCatalog()

    catalog = RoleCatalog()
    for role, description in (data.get("roles") or {}).items():
        role = str(role)
        if role == COORDINATOR or not ROLE_ID_PATTERN.match(role):
            logger.warning(f"Skipping invalid role '{role}' in {config_path}")
            continue
        catalog.roles[role] = str(description or "")

    for name, sequence in (data.get("pipelines") or {}).items():
        if not isinstance(sequence, list) or not sequence:
            logger.warning(f"Skipping pipeline '{name}' in {config_path}: expected a non-empty list")
            continue
        catalog.pipelines[str(name)] = [str(r) for r in sequence]

    return catalog
