"""Research pipeline: turn one business question into a cited analytical deliverable."""

__version__ = "0.3.0"
