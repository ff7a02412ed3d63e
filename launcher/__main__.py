"""Allow running the launcher CLI via ``python -m launcher``."""

from launcher.cli import cli

if __name__ == "__main__":
    cli()
