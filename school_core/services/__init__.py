# =============================================================================
# school_core/services/__init__.py
# Service Layer for the school core
# Separates business logic from UI presentation
# =============================================================================

from .base_service import BaseService, ServiceResult

__all__ = [
    "BaseService",
    "ServiceResult",
]
