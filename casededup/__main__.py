"""Allow running as ``python -m casededup``."""

from .cli import main

if __name__ == "__main__":
    main()
