"""
Access / Tenant Scoping Services

Resolves the client a request acts on. The decision service itself does
no authorization, only client_id filtering.
"""

from .clients import (
    create_client,
    generate_api_key,
    generate_slug,
    get_client,
    require_active_client,
    find_active_admins_for_client,
    find_active_memberships_for_user,
)
from .client_scope import Caller, ClientScope, ScopeResolver

__all__ = [
    'create_client',
    'generate_api_key',
    'generate_slug',
    'get_client',
    'require_active_client',
    'find_active_admins_for_client',
    'find_active_memberships_for_user',
    'Caller',
    'ClientScope',
    'ScopeResolver',
]
