"""
Entity Resolver

Idempotent find-or-create for the subject entity and its deal, scoped per
client.

Uniqueness of (client_id, external_id) is enforced by the database, not by
application locks. Where the dialect offers INSERT ... ON CONFLICT DO UPDATE
(PostgreSQL, SQLite) a single atomic statement is used; elsewhere the
insert runs in a savepoint and a losing concurrent insert re-reads the
winner's row instead of failing the caller.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import uuid4
import logging

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...errors import ValidationError
from ...models.db_models import SubjectEntityDB, DealDB

logger = logging.getLogger(__name__)

# Attributes refreshed on every occurrence of the same external id
REFRESHABLE_FIELDS = ("name", "domain", "industry", "country", "metadata_json")

UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass
class DealInput:
    external_deal_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    discount_requested: Optional[float] = None


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, dict) and not value:
        return True
    return False


class EntityResolver:
    """Resolves subject entities and deals inside the caller's session."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # SUBJECT ENTITY
    # =========================================================================

    def resolve_subject_entity(
        self,
        client_id: str,
        external_id: str,
        name: str,
        domain: Optional[str] = None,
        industry: Optional[str] = None,
        country: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SubjectEntityDB:
        """
        Upsert keyed on (client_id, external_id).

        Only supplied, non-blank attributes overwrite an existing row;
        identity fields never change.
        """
        if _is_blank(external_id):
            raise ValidationError("subject_entity.external_id is required")
        if _is_blank(name):
            raise ValidationError("subject_entity.name is required")

        supplied = {
            "name": name,
            "domain": domain,
            "industry": industry,
            "country": country,
            "metadata_json": metadata,
        }
        attrs = {k: v for k, v in supplied.items() if not _is_blank(v)}

        dialect = self.db.get_bind().dialect.name
        insert_fn = UPSERT_DIALECTS.get(dialect)
        if insert_fn is not None:
            self._upsert(insert_fn, client_id, external_id, attrs)
        else:
            self._find_or_create(client_id, external_id, attrs)

        entity = (
            self.db.query(SubjectEntityDB)
            .filter(
                SubjectEntityDB.client_id == client_id,
                SubjectEntityDB.external_id == external_id,
            )
            .populate_existing()
            .one()
        )
        logger.debug(f"Resolved subject entity {entity.id} for client {client_id} ({external_id})")
        return entity

    def _upsert(self, insert_fn, client_id: str, external_id: str, attrs: Dict[str, Any]) -> None:
        now = datetime.utcnow()
        table = SubjectEntityDB.__table__
        stmt = insert_fn(table).values(
            id=str(uuid4()),
            client_id=client_id,
            external_id=external_id,
            created_at=now,
            updated_at=now,
            **attrs,
        )
        set_ = {field: getattr(stmt.excluded, field) for field in attrs}
        set_["updated_at"] = now
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.client_id, table.c.external_id],
            set_=set_,
        )
        self.db.execute(stmt)

    def _find_or_create(self, client_id: str, external_id: str, attrs: Dict[str, Any]) -> None:
        entity = self._find(client_id, external_id)
        if entity is None:
            try:
                with self.db.begin_nested():
                    self.db.add(SubjectEntityDB(
                        id=str(uuid4()),
                        client_id=client_id,
                        external_id=external_id,
                        **attrs,
                    ))
                return
            except IntegrityError:
                # A concurrent request inserted the row first - read it back
                logger.debug(f"Concurrent insert for ({client_id}, {external_id}), re-reading")
                entity = self._find(client_id, external_id)
                if entity is None:
                    raise

        for field, value in attrs.items():
            setattr(entity, field, value)
        self.db.flush()

    def _find(self, client_id: str, external_id: str) -> Optional[SubjectEntityDB]:
        return (
            self.db.query(SubjectEntityDB)
            .filter(
                SubjectEntityDB.client_id == client_id,
                SubjectEntityDB.external_id == external_id,
            )
            .first()
        )

    # =========================================================================
    # DEAL
    # =========================================================================

    def resolve_deal(
        self,
        subject_entity: SubjectEntityDB,
        deal: Optional[DealInput] = None,
    ) -> Optional[DealDB]:
        """
        Find a deal by external deal id on this entity, otherwise create one.

        Without an external deal id every call creates a new deal row.
        """
        if deal is None:
            return None

        if deal.external_deal_id:
            existing = (
                self.db.query(DealDB)
                .filter(
                    DealDB.subject_entity_id == subject_entity.id,
                    DealDB.external_deal_id == deal.external_deal_id,
                )
                .first()
            )
            if existing:
                logger.debug(f"Reusing deal {existing.id} ({deal.external_deal_id})")
                return existing

        record = DealDB(
            id=str(uuid4()),
            subject_entity_id=subject_entity.id,
            external_deal_id=deal.external_deal_id or None,
            amount=deal.amount,
            currency=deal.currency.upper() if deal.currency else None,
            discount_requested=deal.discount_requested,
        )
        self.db.add(record)
        self.db.flush()
        return record
