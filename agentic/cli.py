"""
cli.py - Command line entry point.

Usage:
    agentic-workflows compile .github/workflows/triage.md [--strict] [--fail-fast]
    agentic-workflows compile triage.md --output build/triage.lock.yml --check-packages
    agentic-workflows domains python node api.github.com
    agentic-workflows domains --engine copilot defaults

``compile`` writes ``<stem>.lock.yml`` next to the source unless
``--output`` is given. ``domains`` expands ecosystem identifiers and
reports the ecosystem of literal domains.

Exit status is 1 when compilation fails.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from agentic.domains import ecosystem_of, engine_allowed_domains, resolve_allowed_domains
from agentic.engines.registry import get_engine_registry
from agentic.errors import WorkflowError
from agentic.workflow.compiler import WorkflowCompiler, render_workflow_yaml
from agentic.workflow.frontmatter import NetworkSettings

logger = logging.getLogger(__name__)


def lock_file_path(source: Path) -> Path:
    """``triage.md`` -> ``triage.lock.yml`` in the same directory."""
    return source.with_name(f"{source.stem}.lock.yml")


def cmd_compile(args: argparse.Namespace) -> int:
    source = Path(args.file)
    compiler = WorkflowCompiler(fail_fast=args.fail_fast, validate_packages=args.check_packages)
    try:
        spec = compiler.compile_file(source, strict=True if args.strict else None)
        text = render_workflow_yaml(spec)
    except WorkflowError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    output = Path(args.output) if args.output else lock_file_path(source)
    logger.debug("Writing %d bytes to %s", len(text), output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    print(f"Compiled {source} -> {output}")
    return 0


def cmd_domains(args: argparse.Namespace) -> int:
    registry = get_engine_registry()
    for entry in args.entries:
        network = NetworkSettings(allowed=(entry,))
        if args.engine:
            try:
                engine = registry.get_engine(args.engine)
            except WorkflowError as e:
                print(f"ERROR: {e}", file=sys.stderr)
                return 1
            domains = engine_allowed_domains(engine.profile, network)
        else:
            domains = resolve_allowed_domains(network)

        ecosystem = ecosystem_of(entry)
        if domains == [entry]:
            print(f"{entry}: {ecosystem or '(no ecosystem)'}")
            continue
        print(f"{entry}:")
        for domain in domains:
            print(f"  {domain}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentic-workflows",
        description="Compile agentic workflow markdown into CI job graphs",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    compile_parser = subparsers.add_parser("compile", help="Compile a workflow file")
    compile_parser.add_argument("file", help="Workflow markdown file")
    compile_parser.add_argument("--strict", action="store_true", help="Force strict mode")
    compile_parser.add_argument(
        "--fail-fast", action="store_true", help="Stop at the first error instead of collecting all"
    )
    compile_parser.add_argument("--output", "-o", help="Output path (default: <stem>.lock.yml)")
    compile_parser.add_argument(
        "--check-packages", action="store_true", help="Look up referenced npm/PyPI packages"
    )
    compile_parser.set_defaults(func=cmd_compile)

    domains_parser = subparsers.add_parser("domains", help="Resolve ecosystem identifiers and domains")
    domains_parser.add_argument("entries", nargs="+", help="Ecosystem identifiers or domains")
    domains_parser.add_argument("--engine", help="Include the engine's default domains")
    domains_parser.set_defaults(func=cmd_domains)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
