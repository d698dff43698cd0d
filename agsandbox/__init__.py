"""Sandbox support for coding agents: CLI parsing, agent profiles, auth proxy protocol and host, and browser sidecar."""

__version__ = "0.7.0"
__all__ = ["cli", "agent", "protocol", "host", "browser"]