from starsync.cli.main import main

__all__ = ["main"]
