"""Allow ``python -m rewind``."""

from rewind.cli import cli

cli()
