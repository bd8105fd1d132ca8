"""Unit tests.

Purpose
- Verify one orchestration component at a time against `InMemoryBackend`.

Guidelines
- Inject sleep and monotonic clocks instead of waiting for real time to pass.
- Local sockets and temporary SQLite files are fine; containers are not.
- Concurrency tests synchronize with `threading.Barrier` and join with timeouts.
"""
