"""Allow ``python -m ralphdev``."""

from ralphdev.cli import main

main()
