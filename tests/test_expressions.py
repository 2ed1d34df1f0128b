"""Tests for expression extraction, substitution and secret isolation."""

import pytest

from agentic.expressions import (
    ESCAPED_SHELL_REF,
    SHELL_REF,
    claim_name,
    contains_expression,
    env_var_name,
    extract,
    extract_mappings,
    extract_secret_name,
    extract_secrets_from_map,
    extract_secrets_from_value,
    hashed_env_var_name,
    heredoc_text,
    isolate,
    redaction_names,
    replace_secrets_with_env_vars,
    replace_template_expressions,
    substitute,
    template_env_var_name,
    transform_activation_outputs,
)

# ============================================================================
# Naming
# ============================================================================


@pytest.mark.parametrize(
    "content,expected",
    [
        ("github.run_id", "GH_AW_GITHUB_RUN_ID"),
        ("secrets.TOKEN", "GH_AW_SECRETS_TOKEN"),
        ("github.event.issue.number", "GH_AW_GITHUB_EVENT_ISSUE_NUMBER"),
        ("needs.pre-check.outputs.ok", "GH_AW_NEEDS_PRE_CHECK_OUTPUTS_OK"),
    ],
)
def test_simple_path_names(content, expected):
    assert env_var_name(content) == expected


def test_complex_expression_gets_hashed_name():
    name = env_var_name("github.event.issue.title || 'none'")
    assert name.startswith("GH_AW_EXPR_")
    assert len(name) == len("GH_AW_EXPR_") + 8
    assert name == env_var_name("github.event.issue.title || 'none'")


def test_claim_name_falls_back_to_hash():
    claimed = {}
    assert claim_name("GH_AW_FOO_BAR", "foo-bar", claimed) == "GH_AW_FOO_BAR"
    assert claim_name("GH_AW_FOO_BAR", "foo-bar", claimed) == "GH_AW_FOO_BAR"
    assert claim_name("GH_AW_FOO_BAR", "foo_bar", claimed) == hashed_env_var_name("foo_bar")
    assert claimed == {"GH_AW_FOO_BAR": "foo-bar", hashed_env_var_name("foo_bar"): "foo_bar"}


# ============================================================================
# Extraction
# ============================================================================


class TestExtract:
    """Expression extraction from markdown."""

    def test_dedupes_by_body(self):
        text = "Run ${{ github.run_id }} and ${{github.run_id}} again"
        assert extract(text) == {"GH_AW_GITHUB_RUN_ID": "${{ github.run_id }}"}

    def test_preserves_first_appearance_order(self):
        mappings = extract_mappings("${{ github.actor }} ${{ github.repository }}")
        assert [m.content for m in mappings] == ["github.actor", "github.repository"]

    def test_activation_outputs_rewritten(self):
        result = extract("Issue text: ${{ needs.activation.outputs.text }}")
        assert result == {"GH_AW_STEPS_SANITIZED_OUTPUTS_TEXT": "${{ steps.sanitized.outputs.text }}"}

    def test_empty_text(self):
        assert extract("no expressions here") == {}

    @pytest.mark.parametrize("first,second", [("foo-bar", "foo_bar"), ("a.B", "a.b")])
    def test_colliding_paths_round_trip(self, first, second):
        text = "x ${{ %s }} y ${{ %s }} z" % (first, second)
        rewritten, mapping = isolate(text)
        assert len(mapping) == 2
        assert sorted(mapping.values()) == sorted(["${{ %s }}" % first, "${{ %s }}" % second])
        assert "${{" not in rewritten

        restored = rewritten
        for name, expression in mapping.items():
            restored = restored.replace("__%s__" % name, expression)
        assert restored == text

    def test_first_claimant_keeps_path_name(self):
        result = extract("${{ foo_bar }} ${{ foo-bar }}")
        assert result["GH_AW_FOO_BAR"] == "${{ foo_bar }}"
        assert result[hashed_env_var_name("foo-bar")] == "${{ foo-bar }}"


def test_transform_leaves_custom_outputs():
    assert transform_activation_outputs("needs.activation.outputs.title") == "steps.sanitized.outputs.title"
    assert transform_activation_outputs("needs.activation.outputs.text_custom") == (
        "needs.activation.outputs.text_custom"
    )


def test_substitute_with_placeholders():
    text = "Actor ${{ github.actor }} in ${{ github.repository }}"
    mapping = {"GH_AW_GITHUB_ACTOR": "${{ github.actor }}"}
    assert substitute(text, mapping) == "Actor __GH_AW_GITHUB_ACTOR__ in ${{ github.repository }}"


def test_isolate_round_trip():
    text, mapping = isolate("Token ${{ secrets.API_KEY }}", SHELL_REF)
    assert text == "Token ${GH_AW_SECRETS_API_KEY}"
    assert mapping == {"GH_AW_SECRETS_API_KEY": "${{ secrets.API_KEY }}"}


def test_redaction_names_only_secrets():
    mapping = {
        "A": "${{ secrets.A }}",
        "B": "${{ github.actor }}",
        "C": "${{ secrets.X || secrets.Y }}",
    }
    assert redaction_names(mapping) == ["A", "C"]


def test_contains_expression():
    assert contains_expression(["plain", "${{ env.X }}"])
    assert not contains_expression(["plain"])


# ============================================================================
# Secrets
# ============================================================================


class TestSecretExtraction:
    """Secret references inside expressions."""

    def test_single_secret_name(self):
        assert extract_secret_name("${{ secrets.MY_TOKEN }}") == "MY_TOKEN"
        assert extract_secret_name("plain") == ""

    def test_fallback_chain(self):
        value = "${{ secrets.A || secrets.B }}"
        assert extract_secrets_from_value(value) == {"A": value, "B": value}

    def test_negation_and_parentheses(self):
        value = "${{ !(secrets.FLAG && secrets.OTHER) }}"
        assert set(extract_secrets_from_value(value)) == {"FLAG", "OTHER"}

    def test_unterminated_ignored(self):
        assert extract_secrets_from_value("${{ secrets.BROKEN") == {}

    def test_from_map(self):
        secrets = extract_secrets_from_map({"X": "${{ secrets.X }}", "Y": "literal"})
        assert secrets == {"X": "${{ secrets.X }}"}


def test_replace_secrets_with_escaped_refs():
    value = "Bearer ${{ secrets.API_KEY }}"
    secrets = extract_secrets_from_value(value)
    assert replace_secrets_with_env_vars(value, secrets) == "Bearer \\${API_KEY}"


# ============================================================================
# Template Expressions (MCP configuration)
# ============================================================================


@pytest.mark.parametrize(
    "content,expected",
    [
        ("secrets.API_KEY", "API_KEY"),
        ("env.HOME_DIR", "HOME_DIR"),
        ("github.workspace", "GITHUB_WORKSPACE"),
        ("github.event.issue.number", "GITHUB_EVENT_ISSUE_NUMBER"),
    ],
)
def test_template_env_var_name(content, expected):
    assert template_env_var_name(content) == expected


def test_template_env_var_name_complex():
    assert template_env_var_name("secrets.A || secrets.B").startswith("GH_AW_EXPR_")


def test_replace_template_expressions():
    value, env = replace_template_expressions("Bearer ${{ secrets.TOKEN }}")
    assert value == "Bearer ${TOKEN}"
    assert env == {"TOKEN": "${{ secrets.TOKEN }}"}


def test_replace_template_expressions_escaped():
    value, env = replace_template_expressions("${{ github.workspace }}/data", ESCAPED_SHELL_REF)
    assert value == "\\${GITHUB_WORKSPACE}/data"
    assert env == {"GITHUB_WORKSPACE": "${{ github.workspace }}"}


def test_template_secret_and_env_share_no_name():
    claimed = {}
    first, env_a = replace_template_expressions("${{ secrets.TOKEN }}", SHELL_REF, claimed)
    second, env_b = replace_template_expressions("${{ env.TOKEN }}", SHELL_REF, claimed)
    assert first == "${TOKEN}"
    assert env_a == {"TOKEN": "${{ secrets.TOKEN }}"}
    assert second != "${TOKEN}"
    assert list(env_b.values()) == ["${{ env.TOKEN }}"]
    assert second == SHELL_REF.format(name=next(iter(env_b)))


def test_template_collision_within_one_value():
    value, env = replace_template_expressions("${{ secrets.TOKEN }}:${{ env.TOKEN }}")
    assert len(env) == 2
    assert sorted(env.values()) == ["${{ env.TOKEN }}", "${{ secrets.TOKEN }}"]


# ============================================================================
# Shell Heredocs
# ============================================================================


class TestHeredocText:
    """Text written through an unquoted heredoc."""

    def test_references_expand(self):
        assert heredoc_text('"Bearer ${API}"') == '"Bearer ${API}"'

    def test_passthrough_references_stay_literal(self):
        text = '"${API}" "${GITHUB_WORKSPACE}"'
        assert heredoc_text(text, ("API",)) == '"\\${API}" "${GITHUB_WORKSPACE}"'

    def test_shell_metacharacters_escaped(self):
        assert heredoc_text('"\\\\d+"') == '"\\\\\\\\d+"'
        assert heredoc_text("`id` $HOME $(whoami)") == "\\`id\\` \\$HOME \\$(whoami)"

    def test_escaped_json_backslash_before_reference(self):
        # JSON "\\${X}" is a literal backslash followed by the reference
        assert heredoc_text('"\\\\${X}"') == '"\\\\\\\\${X}"'
