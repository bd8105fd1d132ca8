"""Integration tests.

Purpose
- Exercise schema scripts, Alembic upgrades, resets and scope sharing against
  real databases: SQLite files always, PostgreSQL and Redis containers when
  Docker answers.

Guidelines
- Docker-backed tests carry the `requires_docker` mark and skip without a daemon.
- Each test leaves its resources stopped or released.
"""
