"""flatten_tree: flatten a directory tree into one structured text artifact."""

__version__ = "0.1.0"
