"""
Exception handlers for the QuestForge-AI server.

This package maps package errors to HTTP responses and registers a catch-all
handler for unexpected exceptions.
"""

from .global_handler import setup_exception_handlers

__all__ = ["setup_exception_handlers"]
