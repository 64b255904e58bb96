"""OMR interview scoring: sheet analysis, duplicate detection and grading."""

__version__ = "2.0.0"
