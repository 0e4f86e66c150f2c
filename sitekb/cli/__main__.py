"""Allow ``python -m sitekb.cli`` execution."""

from sitekb.cli.commands import main

main()
