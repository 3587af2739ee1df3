"""
Service providers for route handlers.

Routers never import the module-level singletons directly; they depend on these providers so
tests can swap in isolated instances with `app.dependency_overrides`.
"""

from document_vault.managers.auth_manager import PrincipalResolver, principal_resolver
from document_vault.managers.family_manager import FamilyManager, family_manager
from document_vault.managers.identity_manager import IdentityDirectory, identity_directory
from document_vault.managers.security_manager import SecurityManager, security_manager
from document_vault.services.document_service import DocumentService, document_service


def get_principal_resolver() -> PrincipalResolver:
    return principal_resolver


def get_identity_directory() -> IdentityDirectory:
    return identity_directory


def get_family_manager() -> FamilyManager:
    return family_manager


def get_document_service() -> DocumentService:
    return document_service


def get_security_manager() -> SecurityManager:
    return security_manager
