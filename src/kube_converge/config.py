"""Client configuration.

Options can be given explicitly or read from the environment with
``ClientOptions.from_env()``. Explicit keyword arguments always win over
environment values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any

from .exceptions import ConfigurationError

DEFAULT_NAMESPACE = "default"
"""Namespace given to namespaced documents that do not declare one."""

DEFAULT_CREATE_RETRY_ATTEMPTS = 5
DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_PROPAGATION_POLICY = "Background"

PROPAGATION_POLICIES = ("Background", "Foreground", "Orphan")

ENV_PREFIX = "KUBE_CONVERGE_"
"""Prefix of the environment variables read by ``ClientOptions.from_env()``."""

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class ClientOptions:
    """
    Tunables for a convergence client.

    Attributes:
        namespace: Default namespace for namespaced documents without one
        three_way_merge: Use three-way JSON merge for schemaless kinds.
            When False, schemaless kinds get a two-way merge patch of
            (current -> target), which does not protect live-only fields.
        create_retry_attempts: Total create/patch attempts on conflict
        max_concurrency: Upper bound on concurrent calls within one batch
        poll_interval: Seconds between readiness polls
        propagation_policy: Deletion propagation policy
        validate: Validate documents against the schema registry on build
    """

    namespace: str = DEFAULT_NAMESPACE
    three_way_merge: bool = True
    create_retry_attempts: int = DEFAULT_CREATE_RETRY_ATTEMPTS
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    poll_interval: float = DEFAULT_POLL_INTERVAL
    propagation_policy: str = DEFAULT_PROPAGATION_POLICY
    validate: bool = False

    def __post_init__(self) -> None:
        if not self.namespace:
            raise ConfigurationError("namespace", self.namespace, "must not be empty")
        if self.create_retry_attempts < 1:
            raise ConfigurationError(
                "create_retry_attempts", self.create_retry_attempts, "must be at least 1"
            )
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency", self.max_concurrency, "must be at least 1")
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval", self.poll_interval, "must be positive")
        if self.propagation_policy not in PROPAGATION_POLICIES:
            raise ConfigurationError(
                "propagation_policy",
                self.propagation_policy,
                f"must be one of {', '.join(PROPAGATION_POLICIES)}",
            )

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides: Any) -> ClientOptions:
        """
        Build options from ``KUBE_CONVERGE_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``
            **overrides: Explicit values that take precedence

        Raises:
            ConfigurationError: If a variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            values[f.name] = _coerce(f.name, raw, type(getattr(cls, f.name)))
        values.update(overrides)
        return cls(**values)


def _coerce(name: str, raw: str, target: type) -> Any:
    if target is bool:
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ConfigurationError(name, raw, "expected a boolean")
    if target in (int, float):
        try:
            return target(raw)
        except ValueError:
            raise ConfigurationError(name, raw, f"expected {target.__name__}") from None
    return raw
