"""EPHEMERA test suite.

Folder taxonomy
- unit/         : Fast checks of a single module, against in-memory backends and fakes.
- integration/  : Real SQLite files, and containers when a Docker daemon is reachable.
- e2e/          : The `ephemera` command line, driven through click's CliRunner.
- fixtures/     : Shared fixtures, SQL scripts and an Alembic environment (no tests here).

General guidance
- Keep unit fast and deterministic; prefer `InMemoryBackend` over mocks at the backend seam.
- Tests needing Docker are marked `requires_docker` and skip when no daemon answers.
- Default markers (unit, integration, e2e) follow the top-level folder (see conftest.py).
"""
