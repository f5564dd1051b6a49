"""Capability router: bounded execution, input-repair retries and final-pass rendering for chat capabilities."""

__version__ = "0.1.0"
