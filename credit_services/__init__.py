"""
credit_services -- Administrative facade over config, batches and decisions.
"""

from credit_services.admin_service import LendingAdminService

__all__ = ["LendingAdminService"]
