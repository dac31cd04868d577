"""Fallback env file for hosts that launch the server with a bare environment.

``~/.config/storyboard-mcp/.env`` holds plain ``KEY=VALUE`` lines (optional
``export`` prefix and surrounding quotes). A value is injected only when the
process variable is missing, blank, or an unexpanded ``${KEY}`` reference.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

ENV_FILE = Path.home() / ".config" / "storyboard-mcp" / ".env"

_LINE_RE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*?)\s*$")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def read_env_file(path: Path) -> dict[str, str]:
    """Return the assignments in *path*; an absent file yields ``{}``."""
    if not path.is_file():
        return {}
    values: dict[str, str] = {}
    for line in path.read_text().splitlines():
        if line.lstrip().startswith("#"):
            continue
        match = _LINE_RE.match(line)
        if match:
            values[match.group(1)] = _unquote(match.group(2))
    return values


def _needs_value(key: str, current: str | None) -> bool:
    value = _unquote((current or "").strip()).strip()
    return not value or value in (f"${key}", f"${{{key}}}") or value.startswith(f"${{{key}:-")


def load_env_file(path: Path | None = None) -> dict[str, str]:
    """Inject missing variables from *path* (default :data:`ENV_FILE`) into ``os.environ``.

    Returns:
        The variables that were injected.
    """
    injected = {
        key: value
        for key, value in read_env_file(path or ENV_FILE).items()
        if _needs_value(key, os.environ.get(key))
    }
    os.environ.update(injected)
    return injected
