"""A small teaching operating system simulator: CPU, kernel and block file system."""

__version__ = "0.1.0"