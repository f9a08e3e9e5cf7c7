"""Allow running as ``python -m nimbus``."""

from nimbus.cli import main

if __name__ == "__main__":
    main()
