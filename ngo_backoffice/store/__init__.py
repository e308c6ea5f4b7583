"""Store layer — SQLite persistence for administrators, documents and the audit trail."""

from ngo_backoffice.store.admins import Administrator, AdminStore
from ngo_backoffice.store.audit import AuditStore
from ngo_backoffice.store.documents import DocumentStore

__all__ = ["Administrator", "AdminStore", "AuditStore", "DocumentStore"]
