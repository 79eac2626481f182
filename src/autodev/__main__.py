"""Allow ``python -m autodev``."""

from autodev.cli import main

main()
