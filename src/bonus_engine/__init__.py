"""Staff bonus and incentive engine for BNPL businesses."""

__version__ = "0.1.0"
