"""CLI entry point for python -m repatch"""
from repatch.cli.commands import app

if __name__ == "__main__":
    app()
