"""Dashino - live widget update hub and job supervisor."""

__version__ = "0.3.0"
