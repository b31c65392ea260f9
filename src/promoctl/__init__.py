"""promoctl - promote container revisions through environment stages."""

__version__ = "0.1.0"
