"""strata: namespaced, multi-database schema migrations."""

__version__ = "0.3.0"
