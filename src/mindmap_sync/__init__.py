"""Bidirectional mindmap <-> feature-tree synchronisation."""

__version__ = "0.1.0"
