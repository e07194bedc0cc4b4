"""Allow running the loop with ``python -m ralph_loop``."""

from ralph_loop.cli import main

if __name__ == "__main__":
    main()
