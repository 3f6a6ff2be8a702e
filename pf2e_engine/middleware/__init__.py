"""Middleware package for the PF2e Character Engine."""

from pf2e_engine.middleware.error_handler import setup_error_handlers

__all__ = [
    "setup_error_handlers",
]
