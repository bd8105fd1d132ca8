"""Test-framework adapters over the framework-agnostic orchestration core."""
