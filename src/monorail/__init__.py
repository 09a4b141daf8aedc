"""
monorail — package root.

File: src/monorail/__init__.py

Purpose
- Monorepo dependency graph, shared install reconciliation, project linking, and
  dependency-ordered builds.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
