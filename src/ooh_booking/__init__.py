"""OOH booking - authorization criteria and inventory allocation for outdoor campaigns."""

__version__ = "0.1.0"
