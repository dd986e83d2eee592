"""CaravanHub - promote and share caravan listings."""

__version__ = "0.1.0"
