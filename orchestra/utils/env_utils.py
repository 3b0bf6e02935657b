"""Environment variable utilities for ORCHESTRA.

Integration settings may reference secrets through ``${VAR}`` placeholders
so that tokens never have to be written into config files.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any

# Keys containing these substrings are considered sensitive and should not be logged
SENSITIVE_KEY_PATTERNS = ("TOKEN", "KEY", "SECRET", "PASSWORD", "PAT", "CREDENTIAL")

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

logger = logging.getLogger(__name__)


class EnvVarExpansionError(Exception):
    """Raised when environment variable expansion fails in strict mode."""

    pass


def is_sensitive_key(key: str) -> bool:
    """Check if a configuration key contains sensitive data.

    Args:
        key: The configuration key name

    Returns:
        True if the key is considered sensitive
    """
    key_upper = key.upper()
    return any(pattern in key_upper for pattern in SENSITIVE_KEY_PATTERNS)


def _describe(context: str) -> str:
    if context and not is_sensitive_key(context):
        return f" in {context}"
    return ""


def expand_env_vars(value: Any, strict: bool = False, context: str = "") -> Any:
    """Expand ${VAR} references in a string, dict or list.

    Args:
        value: The value to expand
        strict: If True, raise for unset variables. Otherwise the ``${VAR}``
            placeholder is preserved and a warning is logged.
        context: Key name used in messages. Omitted when the key looks
            sensitive.

    Returns:
        The value with ${VAR} references replaced with environment values

    Raises:
        EnvVarExpansionError: If strict=True and an env var is not set
    """
    if isinstance(value, dict):
        return {
            k: expand_env_vars(v, strict=strict, context=f"{context}.{k}" if context else k)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [
            expand_env_vars(v, strict=strict, context=f"{context}[{i}]")
            for i, v in enumerate(value)
        ]
    if not isinstance(value, str):
        return value

    missing: list[str] = []

    def replace(match: re.Match[str]) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is None:
            missing.append(match.group(1))
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(replace, value)

    if missing:
        names = ", ".join(missing)
        if strict:
            raise EnvVarExpansionError(f"Missing environment variable(s): {names}{_describe(context)}")
        logger.warning("Environment variable(s) %s not set%s", names, _describe(context))

    return result


__all__ = [
    "EnvVarExpansionError",
    "SENSITIVE_KEY_PATTERNS",
    "expand_env_vars",
    "is_sensitive_key",
]
