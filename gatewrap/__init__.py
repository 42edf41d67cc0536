"""gatewrap - setup wizard and reverse proxy for a supervised OpenClaw gateway."""

__version__ = "0.1.0"
__logo__ = "🦞"
