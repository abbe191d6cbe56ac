"""kubeingest command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``kubeingest`` script).
"""

from kubeingest.cli.main import cli

__all__ = ["cli"]
