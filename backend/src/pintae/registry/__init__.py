"""
Registry package - Static regulatory tables and their derived views.

Holds the 50-field DR registry, the rule-to-DR traceability map and the
controls registry. Everything here is built once and read many times.
"""
