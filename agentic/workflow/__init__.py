"""
Workflow frontmatter models, the compilation IR and strict-mode checks.

The compiler lives in agentic.workflow.compiler and is imported directly.
"""
