"""
Domain package - Core business logic with no external dependencies.

This package contains pure Python domain models, the value transformation
pipeline, the rule interpreter and the rule tables (built-in checks and the
UC1 check pack) that encode PINT-AE conformance.
"""
