"""The ``ephemera`` command-line interface."""
