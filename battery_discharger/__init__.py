"""Daily battery discharge scheduler add-on."""

__version__ = "1.0.0"
