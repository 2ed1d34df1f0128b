"""Tests for the advisory package-existence checks."""

import subprocess

import pytest

from agentic import packages
from agentic.caches import ActionReferenceCache
from agentic.packages import NPM, PYPI, _strip_version, check_packages, collect_packages
from agentic.workflow.compiler import WorkflowCompiler

from conftest import make_spec

FRONTMATTER = {
    "steps": [{"name": "Tools", "run": "npx -y @scope/tool@1.2 --check\npip install requests==2.31"}],
    "post-steps": [{"uses": "actions/upload-artifact@v4"}, {"run": "uvx ruff check ."}],
    "mcp-servers": {
        "memory": {"command": "npx", "args": ["-y", "@modelcontextprotocol/server-memory"]},
        "fetch": {"command": "uvx", "args": ["mcp-server-fetch"]},
        "local": {"command": "node", "args": ["server.js"]},
    },
}


def test_collect_packages():
    found = collect_packages(make_spec(FRONTMATTER))
    assert found == {
        NPM: ["@modelcontextprotocol/server-memory", "@scope/tool@1.2"],
        PYPI: ["mcp-server-fetch", "requests", "ruff"],
    }


def test_collect_nothing():
    assert collect_packages(make_spec({"steps": [{"run": "make test"}]})) == {}


@pytest.mark.parametrize(
    "registry,package,expected",
    [
        (NPM, "@scope/tool@1.2", "@scope/tool"),
        (NPM, "@scope/tool", "@scope/tool"),
        (NPM, "left-pad@1.0.0", "left-pad"),
        (PYPI, "requests>=2", "requests"),
        (PYPI, "uvicorn[standard]", "uvicorn"),
        (PYPI, "ruff", "ruff"),
    ],
)
def test_strip_version(registry, package, expected):
    assert _strip_version(registry, package) == expected


class TestCheckPackages:
    """Lookup outcomes become warnings, never errors."""

    def test_missing_package_warns(self):
        spec = make_spec(FRONTMATTER)
        added = check_packages(spec, lambda registry, package: package != "requests")
        assert added == 1
        warning = spec.diagnostics.warnings[0]
        assert warning.category == "packages"
        assert warning.location == "pypi:requests"
        assert "was not found in the pypi registry" in warning.message

    def test_all_found(self):
        spec = make_spec(FRONTMATTER)
        assert check_packages(spec, lambda registry, package: True) == 0
        assert spec.diagnostics.warnings == []

    def test_lookup_failure_warns(self):
        def lookup(registry, package):
            raise FileNotFoundError("npm")

        spec = make_spec({"steps": [{"run": "npx cowsay"}]})
        assert check_packages(spec, lookup) == 1
        assert "could not be verified" in spec.diagnostics.warnings[0].message


def test_registry_client_commands(monkeypatch):
    calls = []

    def fake_run(cmd, capture_output):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 0 if cmd[0] == "npm" else 1)

    monkeypatch.setattr(packages.subprocess, "run", fake_run)
    assert packages.registry_package_exists(NPM, "@scope/tool@1.2")
    assert not packages.registry_package_exists(PYPI, "requests==2.0")
    assert calls == [["npm", "view", "@scope/tool", "name"], ["pip", "index", "versions", "requests"]]


def test_compiler_runs_lookups_when_enabled():
    compiler = WorkflowCompiler(
        action_cache=ActionReferenceCache(),
        validate_packages=True,
        package_lookup=lambda registry, package: False,
    )
    spec = compiler.compile(make_spec({"steps": [{"run": "npx cowsay"}]}))
    assert [w.location for w in spec.diagnostics.warnings] == ["npm:cowsay"]


def test_compiler_skips_lookups_by_default():
    def lookup(registry, package):
        raise AssertionError("lookup should not run")

    compiler = WorkflowCompiler(action_cache=ActionReferenceCache(), package_lookup=lookup)
    compiler.compile(make_spec({"steps": [{"run": "npx cowsay"}]}))
