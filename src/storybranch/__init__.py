"""storybranch: branch-isolated state and story-structure engine for interactive fiction."""

__version__ = "0.1.0"
