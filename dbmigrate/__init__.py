"""Read versioned migrations from a source and apply them to a database."""

__version__ = "4.0.0"