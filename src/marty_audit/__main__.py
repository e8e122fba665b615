"""Allow ``python -m marty_audit``."""

from .cli import main

main()
