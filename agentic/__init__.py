"""
agentic - Compiler from agentic workflow documents to CI pipeline definitions.
"""

__version__ = "0.1.0"
