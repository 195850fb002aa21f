"""lkdex daemon core: configuration resolution and single-instance guard."""

__version__ = "0.1.0"
