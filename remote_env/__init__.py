"""Privileged development sandbox for ztunnel."""

__version__ = "0.1.0"
