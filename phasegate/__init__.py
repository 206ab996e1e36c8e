"""phasegate - phase-gated multi-role workflow engine."""

__version__ = "0.1.0"
