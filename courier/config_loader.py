"""
Role configuration loader.

Reads role configuration overrides from YAML and merges them over the
built-in defaults. The file lists only what differs:

    roles:
      editor:
        display_name: Section Editor
        permissions: [content:read, content:approve, newsletter:read]
      contributor:
        required_approval: false
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from courier.auth.capabilities import Role
from courier.auth.roles import DEFAULT_ROLE_CONFIGS, RoleConfig, RoleConfigError, parse_role

logger = logging.getLogger(__name__)


class RoleConfigLoader:
    """Loads role configuration overrides from YAML files."""

    def __init__(self, defaults: Mapping[Role, RoleConfig] | None = None):
        self.defaults = dict(defaults or DEFAULT_ROLE_CONFIGS)

    def load(self, path: Path | str) -> dict[Role, RoleConfig]:
        """Load overrides from a YAML file."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        configs = self.from_dict(data)
        logger.info(f"Loaded {len(configs)} role config overrides from {path}")
        return configs

    def from_dict(self, data: Mapping[str, Any]) -> dict[Role, RoleConfig]:
        """Merge a parsed `roles:` mapping over the defaults."""
        roles = data.get("roles", {})
        if not isinstance(roles, Mapping):
            raise RoleConfigError("'roles' must be a mapping of role name to settings")

        configs: dict[Role, RoleConfig] = {}
        for name, overrides in roles.items():
            role = parse_role(name)
            if role is None:
                raise RoleConfigError(f"Unknown role in configuration: {name!r}")

            merged = {**self.defaults[role].model_dump(), **(overrides or {}), "role": role}
            try:
                configs[role] = RoleConfig.model_validate(merged)
            except ValidationError as e:
                raise RoleConfigError(f"Invalid configuration for role '{name}': {e}") from e

        return configs


def load_role_configs(path: Path | str | None) -> dict[Role, RoleConfig]:
    """
    Convenience function to load role overrides.

    Returns an empty mapping when no path is configured.
    """
    if not path:
        return {}
    return RoleConfigLoader().load(path)
