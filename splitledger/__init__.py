"""Shared-expense tracking API with group balance netting."""

__version__ = "0.1.0"
