"""
Ralph Loop - Iterative autonomous development runner.

This package drives an external coding agent against a task file, one task
per iteration, with progress kept in an append-only ledger and repository
hygiene (verification, hooks, grouped commits) applied between iterations.
"""

__version__ = "0.1.0"
