"""Dream journal: local entry store and a rate-limited analysis proxy."""

__version__ = "0.1.0"
