"""
Client Scope Resolution

Decides which client a request acts on. Precedence, highest first:

1. Per-tenant API key (X-API-Key header, apiKey query param or Bearer)
2. Administrative master key - client id must be supplied explicitly
3. Session user + X-Client-Id header, validated against ACTIVE memberships
4. Session user with exactly one ACTIVE membership (auto-select)

Anything else is rejected before the decision service is reached. The
resolved client must exist and be active.
"""
from dataclasses import dataclass
from typing import List, Optional
import hmac
import logging

from sqlalchemy.orm import Session

from ...config import Settings
from ...errors import AccessDenied, Unauthenticated, ValidationError
from ...models.db_models import MembershipRole, MembershipStatus, UserDB
from ..decisions import SYSTEM_ACTOR
from .clients import (
    find_active_memberships_for_user,
    find_client_by_api_key,
    find_membership,
    require_active_client,
)

logger = logging.getLogger(__name__)

VIA_CLIENT_KEY = "client_api_key"
VIA_MASTER_KEY = "master_api_key"
VIA_CLIENT_HEADER = "session_client_header"
VIA_AUTO_SELECT = "session_auto_select"


@dataclass
class Caller:
    """Credentials presented by a request, before a client is chosen."""
    api_key: Optional[str] = None
    bearer_token: Optional[str] = None
    user: Optional[UserDB] = None
    requested_client_id: Optional[str] = None

    @property
    def credentials(self) -> List[str]:
        return [c for c in (self.api_key, self.bearer_token) if c]


@dataclass
class ClientScope:
    client_id: str
    via: str
    user_id: Optional[str] = None
    membership_role: Optional[MembershipRole] = None

    @property
    def acting_user(self) -> str:
        return self.user_id or SYSTEM_ACTOR


class ScopeResolver:

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings

    def _is_master_key(self, credential: str) -> bool:
        master = self.settings.master_api_key
        # Header values may carry non-ASCII text; compare_digest only accepts ASCII str
        return bool(master) and hmac.compare_digest(credential.encode("utf-8"), master.encode("utf-8"))

    def resolve(self, caller: Caller, explicit_client_id: Optional[str] = None) -> ClientScope:
        scope = self._resolve_unchecked(caller, explicit_client_id)
        require_active_client(self.db, scope.client_id)
        return scope

    def _resolve_unchecked(self, caller: Caller, explicit_client_id: Optional[str]) -> ClientScope:
        # 1. Per-tenant credential
        for credential in caller.credentials:
            client = find_client_by_api_key(self.db, credential)
            if client is not None:
                logger.debug(f"Client API key authenticated: {client.id}")
                return ClientScope(client_id=client.id, via=VIA_CLIENT_KEY)

        # 2. Administrative override
        if any(self._is_master_key(c) for c in caller.credentials):
            if not explicit_client_id:
                raise ValidationError("client_id is required when using the administrative API key")
            logger.debug(f"Master API key authenticated for client {explicit_client_id}")
            return ClientScope(client_id=explicit_client_id, via=VIA_MASTER_KEY)

        if caller.user is None:
            logger.warning("Authentication failed")
            raise Unauthenticated("Valid API key or session token is required")

        # 3. Explicit selection, validated against memberships
        if caller.requested_client_id:
            membership = find_membership(self.db, caller.user.id, caller.requested_client_id)
            if membership is None or membership.status != MembershipStatus.ACTIVE:
                raise AccessDenied(
                    "No active membership for the requested client",
                    {"client_id": caller.requested_client_id},
                )
            return ClientScope(
                client_id=membership.client_id,
                via=VIA_CLIENT_HEADER,
                user_id=caller.user.id,
                membership_role=membership.role,
            )

        # 4. Auto-select a single active membership
        memberships = find_active_memberships_for_user(self.db, caller.user.id)
        if len(memberships) == 1:
            return ClientScope(
                client_id=memberships[0].client_id,
                via=VIA_AUTO_SELECT,
                user_id=caller.user.id,
                membership_role=memberships[0].role,
            )

        raise AccessDenied(
            "Client selection required: send X-Client-Id for one of your active memberships"
            if memberships else "User has no active client membership"
        )
