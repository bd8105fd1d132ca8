"""Concrete implementations of the orchestration ports."""
