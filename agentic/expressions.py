"""
expressions.py - Template expression extraction and secret isolation.

Every ``${{ ... }}`` expression that would otherwise be embedded in a
generated artifact is swapped for a reference to a synthetic environment
variable. The variable -> expression mapping is handed only to the step
that sets environment variables (and to log masking), so generated
configuration documents never contain a literal secret expression.

Naming:
- simple dotted paths become ``GH_AW_<PATH>`` (``github.run_id`` ->
  ``GH_AW_GITHUB_RUN_ID``, ``secrets.TOKEN`` -> ``GH_AW_SECRETS_TOKEN``)
- anything else becomes ``GH_AW_EXPR_<hash>``

Distinct expressions always get distinct names. When two bodies would
share a path-derived name (``foo-bar`` and ``foo_bar``, or ``a.B`` and
``a.b``), the later one falls back to its hash name.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

ENV_PREFIX = "GH_AW_"

EXPRESSION_RE = re.compile(r"\$\{\{\s*(.*?)\s*\}\}", re.DOTALL)
SIMPLE_PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*(\.[A-Za-z_][A-Za-z0-9_-]*)*$")
SECRET_REF_RE = re.compile(r"\bsecrets\.([A-Za-z_][A-Za-z0-9_]*)")
ENV_REF_RE = re.compile(r"^env\.([A-Za-z_][A-Za-z0-9_]*)$")
ACTIVATION_OUTPUT_RE = re.compile(r"\bneeds\.activation\.outputs\.(text|title|body)\b")

# Reference styles for substitute()
PLACEHOLDER_REF = "__{name}__"
SHELL_REF = "${{{name}}}"
ESCAPED_SHELL_REF = "\\${{{name}}}"


@dataclass(frozen=True)
class ExpressionMapping:
    """One extracted expression and its synthetic variable."""

    env_var: str
    content: str

    @property
    def expression(self) -> str:
        return f"${{{{ {self.content} }}}}"


def transform_activation_outputs(content: str) -> str:
    """Point activation text outputs at the sanitized step outputs.

    ``needs.activation.outputs.text`` becomes ``steps.sanitized.outputs.text``
    (likewise title and body); ``text_custom`` and similar are untouched.
    """
    return ACTIVATION_OUTPUT_RE.sub(r"steps.sanitized.outputs.\1", content)


def hashed_env_var_name(content: str) -> str:
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:8].upper()
    return f"{ENV_PREFIX}EXPR_{digest}"


def env_var_name(content: str) -> str:
    """Deterministic synthetic variable name for an expression body."""
    if SIMPLE_PATH_RE.match(content):
        return ENV_PREFIX + re.sub(r"[.\-]", "_", content).upper()
    return hashed_env_var_name(content)


def claim_name(name: str, content: str, claimed: Dict[str, str]) -> str:
    """Reserve ``name`` for ``content`` in ``claimed`` (name -> body).

    A name already held by a different body is not reused; the hash name
    of ``content`` is claimed instead.
    """
    owner = claimed.get(name)
    if owner is not None and owner != content:
        fallback = hashed_env_var_name(content)
        logger.debug("Variable %s already used by %r; using %s for %r", name, owner, fallback, content)
        name = fallback
    claimed[name] = content
    return name


def extract_mappings(text: str) -> List[ExpressionMapping]:
    """Find every distinct expression in order of first appearance."""
    seen: Dict[str, ExpressionMapping] = {}
    claimed: Dict[str, str] = {}
    for match in EXPRESSION_RE.finditer(text):
        content = transform_activation_outputs(match.group(1))
        if not content or content in seen:
            continue
        name = claim_name(env_var_name(content), content, claimed)
        seen[content] = ExpressionMapping(env_var=name, content=content)
    return list(seen.values())


def extract(text: str) -> Dict[str, str]:
    """Map synthetic variable name -> normalized ``${{ ... }}`` expression."""
    mappings = extract_mappings(text)
    if mappings:
        logger.debug("Extracted %d expressions", len(mappings))
    return {m.env_var: m.expression for m in mappings}


def substitute(text: str, mapping: Mapping[str, str], reference: str = PLACEHOLDER_REF) -> str:
    """Replace each mapped expression in ``text`` with its variable reference.

    Expressions are matched by their body, so spacing differences between
    occurrences do not matter. Expressions not in ``mapping`` are left as is.
    """
    by_content: Dict[str, str] = {}
    for env_var, expression in mapping.items():
        match = EXPRESSION_RE.fullmatch(expression.strip())
        body = match.group(1) if match else expression
        by_content[transform_activation_outputs(body)] = env_var

    def _replace(match: "re.Match[str]") -> str:
        content = transform_activation_outputs(match.group(1))
        env_var = by_content.get(content)
        if env_var is None:
            return match.group(0)
        return reference.format(name=env_var)

    return EXPRESSION_RE.sub(_replace, text)


def isolate(text: str, reference: str = PLACEHOLDER_REF) -> Tuple[str, Dict[str, str]]:
    """Extract and substitute in one go; returns (rewritten text, mapping)."""
    mapping = extract(text)
    return substitute(text, mapping, reference), mapping


def redaction_names(mapping: Mapping[str, str]) -> List[str]:
    """Variables whose values must be masked in logs (those carrying secrets)."""
    return sorted(name for name, expr in mapping.items() if SECRET_REF_RE.search(expr))


# =============================================================================
# Secrets
# =============================================================================


def extract_secret_name(value: str) -> str:
    """Name of the first secret referenced inside a ``${{ }}`` expression."""
    for match in EXPRESSION_RE.finditer(value or ""):
        ref = SECRET_REF_RE.search(match.group(1))
        if ref:
            return ref.group(1)
    return ""


def extract_secrets_from_value(value: str) -> Dict[str, str]:
    """Map each referenced secret name to the full expression containing it.

    Handles ``||``, ``&&``, ``!`` and parentheses, and several secrets in one
    expression. Unterminated expressions are ignored.
    """
    secrets: Dict[str, str] = {}
    for match in EXPRESSION_RE.finditer(value or ""):
        for ref in SECRET_REF_RE.finditer(match.group(1)):
            secrets[ref.group(1)] = match.group(0)
    return secrets


def extract_secrets_from_map(values: Mapping[str, str]) -> Dict[str, str]:
    """extract_secrets_from_value over every value of a mapping."""
    secrets: Dict[str, str] = {}
    for key in sorted(values):
        secrets.update(extract_secrets_from_value(values[key]))
    return secrets


def replace_secrets_with_env_vars(value: str, secrets: Mapping[str, str]) -> str:
    """Replace each secret expression with an escaped ``\\${NAME}`` reference."""
    for name, expression in secrets.items():
        value = value.replace(expression, ESCAPED_SHELL_REF.format(name=name))
    return value


def template_env_var_name(content: str) -> str:
    """Variable name for an expression embedded in MCP server configuration.

    ``secrets.X`` and ``env.X`` keep their own name, ``github.x`` becomes
    ``GITHUB_X``; anything else gets a synthetic name.
    """
    if SIMPLE_PATH_RE.match(content):
        head, _, rest = content.partition(".")
        if head in ("secrets", "env") and rest and "." not in rest:
            return rest
        if head == "github" and rest:
            return "GITHUB_" + re.sub(r"[.\-]", "_", rest).upper()
    return env_var_name(content)


def replace_template_expressions(
    value: str,
    reference: str = SHELL_REF,
    claimed: Optional[Dict[str, str]] = None,
) -> Tuple[str, Dict[str, str]]:
    """Swap every expression in ``value`` for a variable reference.

    Returns the rewritten value and the variable -> expression mapping that
    the environment-setup step must export. Pass the same ``claimed`` dict
    across calls whose mappings end up in one environment, so that
    ``secrets.TOKEN`` and ``env.TOKEN`` do not share ``TOKEN``.
    """
    env: Dict[str, str] = {}
    if claimed is None:
        claimed = {}

    def _replace(match: "re.Match[str]") -> str:
        content = match.group(1)
        name = claim_name(template_env_var_name(content), content, claimed)
        env[name] = match.group(0)
        return reference.format(name=name)

    return EXPRESSION_RE.sub(_replace, value), env


def contains_expression(values: Iterable[str]) -> bool:
    return any(EXPRESSION_RE.search(v) for v in values)


# =============================================================================
# Shell Heredocs
# =============================================================================

ESCAPED_VAR_RE = re.compile(r"\\\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def heredoc_text(text: str, passthrough: Iterable[str] = ()) -> str:
    """Prepare ``text`` for an unquoted shell heredoc.

    Backslashes, backticks and dollar signs are escaped so the shell writes
    them through unchanged. ``${NAME}`` references are then re-enabled for
    expansion, except those named in ``passthrough``, which stay literal in
    the written file.
    """
    escaped = re.sub(r"([\\`$])", r"\\\1", text)
    keep = set(passthrough)

    def _restore(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name in keep:
            return match.group(0)
        return SHELL_REF.format(name=name)

    return ESCAPED_VAR_RE.sub(_restore, escaped)
