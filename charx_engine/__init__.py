"""CharX Engine: character bundle packaging and module container codec."""

__version__ = "0.1.0"
