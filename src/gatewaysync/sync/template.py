"""Template resolution for mapping paths and staged file content.

This module provides:
- TemplateContext: Immutable per-cycle values exposed to templates
- resolve_template: Strict ``{{ expression }}`` substitution
- build_apply_template: Per-file callback handed to the sync engine

Expressions are dotted names (``vars.region``, ``gatewayName``), bracket
lookups for keys that are not plain names (``labels['app.kubernetes.io/name']``)
or bare variable keys (``region``). A reference to a missing key is an error,
never an empty substitution.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from gatewaysync.sync.types import BinaryFileError, TemplateError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from gatewaysync.sync.types import ApplyTemplateFunc

logger = logging.getLogger(__name__)

TEMPLATE_OPEN = "{{"
TEMPLATE_CLOSE = "}}"

_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")
_SEGMENT_RE = re.compile(
    r"""\.(?P<attr>[A-Za-z0-9_-]+)|\[\s*(?P<quote>['"])(?P<key>.*?)(?P=quote)\s*\]"""
)


@dataclass(frozen=True)
class TemplateContext:
    """Values available to mapping templates during one sync cycle.

    Exposed to templates under camelCase names: gatewayName, podName,
    namespace, ref, commit, crName, labels, vars.
    """

    gateway_name: str = ""
    pod_name: str = ""
    namespace: str = ""
    ref: str = ""
    commit: str = ""
    cr_name: str = ""
    labels: Mapping[str, str] = field(default_factory=dict)
    vars: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Private copies so callers cannot mutate the context mid-cycle
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))
        object.__setattr__(self, "vars", MappingProxyType(dict(self.vars)))

    def as_mapping(self) -> dict[str, Any]:
        """Get the lookup table used to evaluate expressions.

        Variable keys are reachable at top level unless they shadow a
        built-in name.
        """
        values: dict[str, Any] = dict(self.vars)
        values.update(
            {
                "gatewayName": self.gateway_name,
                "podName": self.pod_name,
                "namespace": self.namespace,
                "ref": self.ref,
                "commit": self.commit,
                "crName": self.cr_name,
                "labels": self.labels,
                "vars": self.vars,
            }
        )
        return values


def _preview(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _evaluate(expression: str, values: Mapping[str, Any]) -> str:
    """Evaluate one expression against the lookup table."""
    expr = expression.strip()
    head = _NAME_RE.match(expr)
    if not head:
        raise TemplateError(f"invalid template expression {expr!r}")

    key = head.group(0)
    if key not in values:
        raise TemplateError(f"resolving {expr!r}: map has no entry for key {key!r}")
    value: Any = values[key]

    pos = head.end()
    while pos < len(expr):
        segment = _SEGMENT_RE.match(expr, pos)
        if not segment:
            raise TemplateError(f"invalid template expression {expr!r}")
        key = segment.group("attr") if segment.group("attr") is not None else segment.group("key")
        if not hasattr(value, "get"):
            raise TemplateError(f"resolving {expr!r}: cannot look up {key!r} in a string value")
        if key not in value:
            raise TemplateError(f"resolving {expr!r}: map has no entry for key {key!r}")
        value = value[key]
        pos = segment.end()

    if hasattr(value, "get"):
        raise TemplateError(f"resolving {expr!r}: expression refers to a map, not a value")
    return str(value)


def resolve_template(template: str, context: TemplateContext) -> str:
    """Resolve all ``{{ expression }}`` markers in a string.

    Strings without markers are returned unchanged.

    Args:
        template: Text possibly containing template markers.
        context: Values for this sync cycle.

    Returns:
        The resolved text.

    Raises:
        TemplateError: If an expression is malformed, unterminated or
            refers to a missing key.
    """
    if TEMPLATE_OPEN not in template:
        return template

    values = context.as_mapping()
    parts: list[str] = []
    pos = 0
    while True:
        start = template.find(TEMPLATE_OPEN, pos)
        if start == -1:
            parts.append(template[pos:])
            break
        end = template.find(TEMPLATE_CLOSE, start + len(TEMPLATE_OPEN))
        if end == -1:
            raise TemplateError(
                f"unterminated template expression in {_preview(template[start:])!r}"
            )
        parts.append(template[pos:start])
        parts.append(_evaluate(template[start + len(TEMPLATE_OPEN) : end], values))
        pos = end + len(TEMPLATE_CLOSE)

    return "".join(parts)


def build_apply_template(context: TemplateContext) -> ApplyTemplateFunc:
    """Build the per-file template callback for a sync plan.

    The callback resolves templates inside a staged file in place. Files
    containing a null byte are treated as binary and rejected without being
    modified; files without markers are left byte-for-byte unchanged.

    Args:
        context: Values bound for the whole cycle.

    Returns:
        Callable taking the staged file path.
    """

    def apply_template(staged_path: Path) -> None:
        try:
            content = staged_path.read_bytes()
        except OSError as e:
            raise TemplateError(f"reading file for templating: {e}") from e

        if b"\x00" in content:
            raise BinaryFileError(staged_path)

        if TEMPLATE_OPEN.encode() not in content:
            return

        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise TemplateError(f"file is not valid UTF-8: {staged_path}") from e

        try:
            resolved = resolve_template(text, context)
        except TemplateError as e:
            raise TemplateError(f"resolving template in {staged_path}: {e}") from e

        try:
            staged_path.write_bytes(resolved.encode("utf-8"))
        except OSError as e:
            raise TemplateError(f"writing templated file {staged_path}: {e}") from e
        logger.debug(f"Templated {staged_path}")

    return apply_template
