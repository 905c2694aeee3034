"""Postal-code gateway that races several CEP lookup services."""

__version__ = "0.1.0"
