"""Entry point for running gatewrap as a module."""

from gatewrap.cli.commands import app

if __name__ == "__main__":
    app()
