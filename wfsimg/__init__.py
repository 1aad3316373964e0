"""A block-based filesystem kept inside a single disk-image file."""

__version__ = "0.1.0"
__all__ = ["colors", "filesystem", "layout", "mkfs"]