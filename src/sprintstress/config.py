"""SprintStress configuration management."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from sprintstress.models import (
    DEFAULT_ACTION_TIMEOUT_MS,
    DEFAULT_API_URL,
    DEFAULT_BASE_URL,
    DEFAULT_LOAN_INCREMENT,
    DEFAULT_MINORITY_BET,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    DEFAULT_ROLE_DURATIONS,
    DEFAULT_SETTLE_SECONDS,
    DEFAULT_TEST_END_DAY,
    DEFAULT_TOTAL_USERS,
    DEFAULT_VIEWPORT,
    ROLES,
)


class StressConfigError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


def _default_distribution() -> dict[str, int]:
    return {role: 1 for role in ROLES}


@dataclass
class StressConfig:
    """Configuration for a SprintStress run."""

    # Target
    base_url: str = DEFAULT_BASE_URL
    api_url: str = DEFAULT_API_URL

    # Paths
    project_dir: Path = field(default_factory=lambda: Path(".sprintstress"))
    users_file: Path = field(default_factory=lambda: Path(".sprintstress/data/users.json"))
    evidence_dir: Path = field(default_factory=lambda: Path(".sprintstress/evidence"))

    # Load shape
    total_users: int = DEFAULT_TOTAL_USERS
    user_distribution: dict[str, int] = field(default_factory=_default_distribution)
    max_concurrency: int | None = None
    role_durations: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_ROLE_DURATIONS))
    test_end_day: int = DEFAULT_TEST_END_DAY

    # Browser
    headless: bool = True
    viewport: tuple[int, int] = DEFAULT_VIEWPORT
    action_timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS
    navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS

    # Persona behavior
    settle_seconds: float = DEFAULT_SETTLE_SECONDS
    loan_increment: int = DEFAULT_LOAN_INCREMENT
    minority_bet: int = DEFAULT_MINORITY_BET

    @property
    def concurrency(self) -> int:
        """Worker pool size; defaults to one worker per simulated user."""
        if self.max_concurrency is not None and self.max_concurrency > 0:
            return self.max_concurrency
        return max(self.total_users, 1)

    def duration_for(self, role: str) -> float:
        return float(self.role_durations.get(role, DEFAULT_ROLE_DURATIONS.get(role, 60)))

    @classmethod
    def from_file(cls, config_path: Path) -> StressConfig:
        """Load config from a YAML file."""
        if not config_path.exists():
            raise StressConfigError(f"Config file not found: {config_path}\n\nTo fix: sprintstress init")
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise StressConfigError(f"Config file must be a YAML mapping: {config_path}")
        return cls._from_dict(data, config_path.parent)

    @classmethod
    def _from_dict(cls, data: dict[str, Any], project_dir: Path) -> StressConfig:
        """Create config from a dictionary."""
        config = cls()
        config.project_dir = project_dir

        config.users_file = project_dir / data.get("users_file", "data/users.json")
        config.evidence_dir = project_dir / data.get("evidence_dir", "evidence")

        if "base_url" in data:
            config.base_url = str(data["base_url"]).rstrip("/")
        if "api_url" in data:
            config.api_url = str(data["api_url"]).rstrip("/")
        if "total_users" in data:
            config.total_users = int(data["total_users"])
        if "user_distribution" in data:
            dist = data["user_distribution"]
            if not isinstance(dist, dict):
                raise StressConfigError("user_distribution must be a mapping of role -> count")
            config.user_distribution = {str(k): int(v) for k, v in dist.items()}
        if "max_concurrency" in data and data["max_concurrency"] is not None:
            config.max_concurrency = int(data["max_concurrency"])
        if "role_durations" in data:
            durations = data["role_durations"]
            if not isinstance(durations, dict):
                raise StressConfigError("role_durations must be a mapping of role -> seconds")
            config.role_durations.update({str(k): float(v) for k, v in durations.items()})
        if "test_end_day" in data:
            config.test_end_day = int(data["test_end_day"])
        if "headless" in data:
            config.headless = bool(data["headless"])
        if "viewport" in data:
            vp = data["viewport"]
            if isinstance(vp, dict):
                config.viewport = (vp.get("width", DEFAULT_VIEWPORT[0]), vp.get("height", DEFAULT_VIEWPORT[1]))
        if "action_timeout_ms" in data:
            config.action_timeout_ms = int(data["action_timeout_ms"])
        if "navigation_timeout_ms" in data:
            config.navigation_timeout_ms = int(data["navigation_timeout_ms"])
        if "settle_seconds" in data:
            config.settle_seconds = float(data["settle_seconds"])
        if "loan_increment" in data:
            config.loan_increment = int(data["loan_increment"])
        if "minority_bet" in data:
            config.minority_bet = int(data["minority_bet"])

        return config

    def validate(self) -> bool:
        """Check that the role distribution adds up to ``total_users``.

        Raises StressConfigError describing the first problem found.
        """
        unknown = sorted(set(self.user_distribution) - set(ROLES))
        if unknown:
            raise StressConfigError(
                f"Unknown role(s) in user_distribution: {', '.join(unknown)}\n\n"
                f"Valid roles: {', '.join(ROLES)}"
            )
        negative = [role for role, count in self.user_distribution.items() if count < 0]
        if negative:
            raise StressConfigError(f"Negative user count for role(s): {', '.join(negative)}")

        total = sum(self.user_distribution.values())
        if total != self.total_users:
            raise StressConfigError(
                f"user_distribution sums to {total}, but total_users is {self.total_users}\n\n"
                "To fix: make the per-role counts add up to total_users"
            )
        if self.settle_seconds < 0:
            raise StressConfigError("settle_seconds must not be negative")
        return True
