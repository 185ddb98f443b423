"""Courier Escrow Service - delivery job lifecycle and escrow settlement."""

__version__ = "0.1.0"
