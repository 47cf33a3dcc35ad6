"""
Domain package - Core business logic with no external dependencies.

This package contains pure Python records, the batch proof function and
the one-time-code lockout rules that decide whether a batch is authentic.
"""
