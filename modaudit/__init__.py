"""Mod archive identity resolution and signature scanning."""

__version__ = "0.1.0"
