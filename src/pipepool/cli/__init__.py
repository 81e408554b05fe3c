"""
CLI layer for pipepool.

One executable, two roles: without a sub-command it runs the manager,
``pipepool worker TYPE`` runs a worker. The manager spawns its workers
through this same entry point.

Entry point::

    pipepool --help
"""

from pipepool.cli.app import app

__all__ = ["app"]
