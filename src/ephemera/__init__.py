"""EPHEMERA

Orchestration of ephemeral test dependencies: database, cache, document
store and queue containers are provisioned once per scope, gated on readiness, given their
schema, reset between test cases and torn down when the last suite lets go.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
