"""
PINT-AE compliance engine.

Rule evaluation and traceability for UAE PINT-AE e-invoice datasets.
"""

__version__ = "0.1.0"
