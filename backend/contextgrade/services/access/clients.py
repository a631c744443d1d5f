"""
Client Service

Client lookup, creation and membership queries used by tenant scoping,
the seed script and the notification collaborator.
"""
from typing import List, Optional
from uuid import uuid4
import logging
import re
import secrets
import string

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...errors import ClientNotFound, ConflictError, InactiveClient
from ...models.db_models import (
    ClientDB, ClientPlan, MembershipDB, MembershipRole, MembershipStatus, UserDB,
)

logger = logging.getLogger(__name__)

API_KEY_ALPHABET = string.ascii_letters + string.digits
API_KEY_LENGTH = 32

ADMIN_ROLES = (MembershipRole.OWNER, MembershipRole.ADMIN)


def generate_api_key(length: int = API_KEY_LENGTH) -> str:
    """Random alphanumeric key (upper + lower + digits)."""
    return "".join(secrets.choice(API_KEY_ALPHABET) for _ in range(length))


def generate_slug(name: str) -> str:
    """URL-friendly slug: 'Emergent Inc' -> 'emergent-inc'."""
    slug = name.strip().lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def get_client(db: Session, client_id: str) -> Optional[ClientDB]:
    return db.query(ClientDB).filter(ClientDB.id == client_id).first()


def find_client_by_api_key(db: Session, api_key: str) -> Optional[ClientDB]:
    if not api_key:
        return None
    return db.query(ClientDB).filter(ClientDB.api_key == api_key).first()


def require_active_client(db: Session, client_id: str) -> ClientDB:
    """Resolved client must exist (404) and be active (403)."""
    client = get_client(db, client_id)
    if client is None:
        raise ClientNotFound(client_id)
    if not client.active:
        raise InactiveClient(client_id)
    return client


def create_client(
    db: Session,
    name: str,
    domain: Optional[str] = None,
    plan: ClientPlan = ClientPlan.STARTER,
    slug: Optional[str] = None,
) -> ClientDB:
    """
    Create a client with a generated slug and API key.

    A slug collision - including one lost to a concurrent request - is a
    ConflictError; client creation is not idempotent.
    """
    slug = slug or generate_slug(name)
    if not slug:
        raise ConflictError("Client name does not produce a usable slug", {"name": name})

    client = ClientDB(
        id=str(uuid4()),
        name=name.strip(),
        slug=slug,
        domain=domain.lower() if domain else None,
        plan=plan,
        active=True,
        api_key=generate_api_key(),
    )
    try:
        with db.begin_nested():
            db.add(client)
    except IntegrityError as e:
        raise ConflictError(f"Client slug '{slug}' already exists", {"slug": slug}) from e

    logger.info(f"Created client {client.id} ({slug})")
    return client


# =============================================================================
# MEMBERSHIPS
# =============================================================================

def find_membership(db: Session, user_id: str, client_id: str) -> Optional[MembershipDB]:
    return (
        db.query(MembershipDB)
        .filter(MembershipDB.user_id == user_id, MembershipDB.client_id == client_id)
        .first()
    )


def find_active_memberships_for_user(db: Session, user_id: str) -> List[MembershipDB]:
    return (
        db.query(MembershipDB)
        .filter(
            MembershipDB.user_id == user_id,
            MembershipDB.status == MembershipStatus.ACTIVE,
        )
        .all()
    )


def find_active_admins_for_client(db: Session, client_id: str) -> List[UserDB]:
    """Users holding an ACTIVE owner/admin membership - consumed by notifications."""
    return (
        db.query(UserDB)
        .join(MembershipDB, MembershipDB.user_id == UserDB.id)
        .filter(
            MembershipDB.client_id == client_id,
            MembershipDB.status == MembershipStatus.ACTIVE,
            MembershipDB.role.in_(ADMIN_ROLES),
        )
        .order_by(UserDB.email)
        .all()
    )
