"""sectiongate — section membership and hierarchical access resolution."""

__version__ = "0.1.0"
