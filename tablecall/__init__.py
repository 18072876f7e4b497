"""TableCall: restaurant reservations by automated phone call."""

__version__ = "0.1.0"
