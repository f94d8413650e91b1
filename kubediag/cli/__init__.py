"""kubediag command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``kubediag`` script).
"""

from kubediag.cli.main import cli

__all__ = ["cli"]
