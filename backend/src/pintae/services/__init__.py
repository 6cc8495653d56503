"""
Services package - Run orchestration, coverage and conformance reporting.

Includes CSV ingestion, mapping coverage, custom checks and the
compliance run service.
"""

from .compliance import ComplianceService, DatasetStore
from .custom_checks import CheckConfigurationError, CustomCheckRegistry

__all__ = ["ComplianceService", "DatasetStore", "CheckConfigurationError", "CustomCheckRegistry"]
