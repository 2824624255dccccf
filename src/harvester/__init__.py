"""Results harvester: structured records from an operator-driven results page."""

__version__ = "1.0.0"
