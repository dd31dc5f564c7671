"""Allow ``python -m run_puppet``."""

from .main import main

main()
