"""
Tests for subject entity and deal resolution.

Test Coverage:
1. Repeated external ids resolve to one entity per client
2. Supplied attributes refresh, blank ones never erase
3. Same external id under two clients stays two entities
4. Find-or-create path for dialects without upsert
5. Deal deduplication by external deal id only
"""
from decimal import Decimal
from unittest.mock import patch

import pytest

from contextgrade.errors import ValidationError
from contextgrade.models.db_models import DealDB, SubjectEntityDB
from contextgrade.services.decisions import DealInput, EntityResolver


@pytest.fixture
def resolver(db_session):
    return EntityResolver(db_session)


# =============================================================================
# TEST: SUBJECT ENTITY
# =============================================================================

class TestResolveSubjectEntity:

    def test_same_external_id_resolves_to_same_entity(self, resolver, db_session, make_client):
        client = make_client()

        first = resolver.resolve_subject_entity(client.id, "crm-42", "Acme Ltd", domain="acme.io")
        db_session.commit()
        second = resolver.resolve_subject_entity(client.id, "crm-42", "Acme Ltd")
        db_session.commit()

        assert first.id == second.id
        assert db_session.query(SubjectEntityDB).count() == 1

    def test_supplied_attributes_are_refreshed(self, resolver, db_session, make_client):
        client = make_client()

        resolver.resolve_subject_entity(client.id, "crm-42", "Acme Ltd", industry="Retail")
        db_session.commit()
        entity = resolver.resolve_subject_entity(
            client.id, "crm-42", "Acme Holdings", industry="Logistics", country="DE",
        )
        db_session.commit()

        assert entity.name == "Acme Holdings"
        assert entity.industry == "Logistics"
        assert entity.country == "DE"

    def test_blank_attributes_do_not_erase(self, resolver, db_session, make_client):
        client = make_client()

        resolver.resolve_subject_entity(
            client.id, "crm-42", "Acme Ltd", domain="acme.io", metadata={"tier": "gold"},
        )
        db_session.commit()
        entity = resolver.resolve_subject_entity(client.id, "crm-42", "Acme Ltd", domain="  ", metadata={})
        db_session.commit()

        assert entity.domain == "acme.io"
        assert entity.metadata_json == {"tier": "gold"}

    def test_external_id_is_scoped_per_client(self, resolver, db_session, make_client):
        client_a = make_client("Client A")
        client_b = make_client("Client B")

        entity_a = resolver.resolve_subject_entity(client_a.id, "crm-42", "Acme Ltd")
        entity_b = resolver.resolve_subject_entity(client_b.id, "crm-42", "Acme Ltd")
        db_session.commit()

        assert entity_a.id != entity_b.id
        assert entity_a.client_id == client_a.id
        assert entity_b.client_id == client_b.id

    @pytest.mark.parametrize("external_id,name", [("", "Acme"), ("crm-1", "   "), (None, "Acme")])
    def test_missing_identity_is_rejected(self, resolver, make_client, external_id, name):
        client = make_client()

        with pytest.raises(ValidationError):
            resolver.resolve_subject_entity(client.id, external_id, name)

    def test_find_or_create_without_upsert_dialect(self, resolver, db_session, make_client):
        """Dialects without ON CONFLICT take the savepoint path with the same result."""
        client = make_client()

        with patch.dict(
            "contextgrade.services.decisions.entity_resolver.UPSERT_DIALECTS", {}, clear=True
        ):
            first = resolver.resolve_subject_entity(client.id, "crm-7", "Globex")
            db_session.commit()
            second = resolver.resolve_subject_entity(client.id, "crm-7", "Globex Corp", country="US")
            db_session.commit()

        assert first.id == second.id
        assert second.name == "Globex Corp"
        assert second.country == "US"
        assert db_session.query(SubjectEntityDB).count() == 1


# =============================================================================
# TEST: DEAL
# =============================================================================

class TestResolveDeal:

    @pytest.fixture
    def entity(self, resolver, db_session, make_client):
        client = make_client()
        entity = resolver.resolve_subject_entity(client.id, "crm-42", "Acme Ltd")
        db_session.commit()
        return entity

    def test_no_deal_returns_none(self, resolver, entity):
        assert resolver.resolve_deal(entity, None) is None

    def test_deal_reused_by_external_id(self, resolver, db_session, entity):
        first = resolver.resolve_deal(entity, DealInput(external_deal_id="D-1", amount=Decimal("5000")))
        second = resolver.resolve_deal(entity, DealInput(external_deal_id="D-1", amount=Decimal("9999")))
        db_session.commit()

        assert first.id == second.id
        assert db_session.query(DealDB).count() == 1

    def test_deal_without_external_id_always_creates(self, resolver, db_session, entity):
        first = resolver.resolve_deal(entity, DealInput(amount=Decimal("5000")))
        second = resolver.resolve_deal(entity, DealInput(amount=Decimal("5000")))
        db_session.commit()

        assert first.id != second.id
        assert db_session.query(DealDB).count() == 2

    def test_currency_is_uppercased(self, resolver, entity):
        deal = resolver.resolve_deal(entity, DealInput(external_deal_id="D-2", currency="eur"))

        assert deal.currency == "EUR"
