"""
CLI layer for pod-spine.

Provides the ``podspine`` Typer application. The commands delegate to
:mod:`podspine.supervisor` and :mod:`podspine.store`; this package only
handles argument parsing and table formatting.

Entry point::

    podspine --help
"""

from podspine.cli.app import app

__all__ = ["app"]
