"""Entrypoints (inbound adapters) for EPHEMERA.

Expose the orchestration layer outside of test suites: the ``ephemera``
command-line interface. Parse and validate inputs, call into
`ephemera.orchestration`, and present results.
"""
