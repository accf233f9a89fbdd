"""Configuration rendering for obstack deployments.

Produces the text consumed by the downstream services (the binlog service's
``deploy.conf.json``, the observer and obproxy ``-o`` option strings) from
the typed ``DeploymentConfig``.

Templates reference config fields with ``${dotted.path}`` placeholders::

    "port": "${ports.proxy}"          →  "port": 2883
    "cluster=${cluster_name}"         →  "cluster=ob"

``$$`` produces a literal ``$``.

Key Concepts:
    ConfigRenderer.render(): Text template + config → text.
    ConfigRenderer.render_json(): Mapping template + config → JSON text. A
        value that is exactly one placeholder keeps the field's native type
        (ints stay ints).
    ConfigRenderer.render_options(): Mapping → ``k=v,k=v`` property string.
    MissingFieldError: Raised at render time, listing *every* field the
        template references that is absent or unset. Misconfiguration is
        surfaced here rather than when the downstream service reads it.

Architecture Decisions:
    - Pure functions: no I/O, no mutation. Writing the text to its
      destination is the caller's job (the stage runner).
    - Deterministic: the same template and config always yield
      byte-identical output.

Tags:
    render, templates, config, json, properties, substitution
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from obstack.core.errors import MissingFieldError

_PLACEHOLDER = re.compile(r"\$(?:(?P<escaped>\$)|\{(?P<field>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)\})")

_MISSING = object()


def placeholders(template: str) -> list[str]:
    """Fields referenced by a text template, in order of first appearance."""
    seen: list[str] = []
    for match in _PLACEHOLDER.finditer(template):
        name = match.group("field")
        if name and name not in seen:
            seen.append(name)
    return seen


def resolve(config: Any, path: str) -> Any:
    """Look up a dotted path by attribute or key; returns a sentinel when absent."""
    value = config
    for part in path.split("."):
        if isinstance(value, Mapping):
            value = value.get(part, _MISSING)
        else:
            value = getattr(value, part, _MISSING)
        if value is _MISSING or value is None:
            return _MISSING
    return value


def _format(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_format(v) for v in value)
    return str(value)


class ConfigRenderer:
    """Renders configuration templates against a ``DeploymentConfig``."""

    def render(self, template: str, config: Any, name: str | None = None) -> str:
        """Substitute every ``${field}`` in ``template``."""
        self._check(placeholders(template), config, name)

        def substitute(match: re.Match[str]) -> str:
            if match.group("escaped"):
                return "$"
            return _format(resolve(config, match.group("field")))

        return _PLACEHOLDER.sub(substitute, template)

    def render_json(self, template: Mapping[str, Any], config: Any, name: str | None = None) -> str:
        """Render a mapping template and serialise it as indented JSON."""
        self._check(self._collect(template), config, name)
        rendered = self._render_value(template, config)
        return json.dumps(rendered, indent=2, ensure_ascii=False) + "\n"

    def render_options(self, options: Mapping[str, Any], config: Any, name: str | None = None) -> str:
        """Render a ``key=value,key=value`` option string (observer/obproxy ``-o``)."""
        self._check(self._collect(options), config, name)
        parts = []
        for key, value in options.items():
            rendered = self._render_value(value, config)
            parts.append(f"{key}={_format(rendered)}")
        return ",".join(parts)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check(fields: list[str], config: Any, name: str | None) -> None:
        missing = [f for f in fields if resolve(config, f) is _MISSING]
        if missing:
            raise MissingFieldError(missing, template_name=name)

    def _collect(self, value: Any) -> list[str]:
        fields: list[str] = []
        if isinstance(value, str):
            fields.extend(placeholders(value))
        elif isinstance(value, Mapping):
            for item in value.values():
                fields.extend(f for f in self._collect(item) if f not in fields)
        elif isinstance(value, (list, tuple)):
            for item in value:
                fields.extend(f for f in self._collect(item) if f not in fields)
        return fields

    def _render_value(self, value: Any, config: Any) -> Any:
        if isinstance(value, str):
            match = _PLACEHOLDER.fullmatch(value)
            if match and match.group("field"):
                resolved = resolve(config, match.group("field"))
                if isinstance(resolved, (bool, int, float, str)):
                    return resolved
            return self.render(value, config)
        if isinstance(value, Mapping):
            return {k: self._render_value(v, config) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._render_value(v, config) for v in value]
        return value
