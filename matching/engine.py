"""
Entry point bundling the matching services over one document store.
"""

from __future__ import annotations

from store.base import DocumentStore

from .admin_service import AdminService
from .applications import ApplicationService
from .partnerships import StudentPartnershipService
from .projects import ProjectService
from .supervisor_partnerships import SupervisorPartnershipService


class MatchingEngine:
    """
    All matching operations over an injected store.

    Example:
        engine = MatchingEngine.from_settings()
        result = engine.applications.approve(application_id, supervisor_id)
        if not result.success:
            return result.to_dict(request_id)
    """

    def __init__(self, store: DocumentStore):
        self.store = store
        self.applications = ApplicationService(store)
        self.student_partnerships = StudentPartnershipService(store)
        self.supervisor_partnerships = SupervisorPartnershipService(store)
        self.projects = ProjectService(store)
        self.admin = AdminService(store)

    @classmethod
    def from_settings(cls) -> MatchingEngine:
        from store.backends import get_document_store

        return cls(get_document_store())
