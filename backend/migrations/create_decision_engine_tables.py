"""
Migration: Create the decision engine tables.

Creates the tenancy tables and the decision lifecycle tables:
1. clients, users, memberships, policies - tenancy and identity
2. subject_entities, deals - resolved from inbound webhooks
3. decisions - the lifecycle record
4. decision_context_snapshots, decision_human_overrides, decision_outcomes - append-only
5. decision_links - typed relationships between decisions

Key constraints:
- (client_id, external_id) unique on subject_entities (idempotent webhooks)
- One context snapshot per decision
- (from, to, relationship_type) unique on decision_links
"""
from sqlalchemy import create_engine, text
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/contextgrade"
)


TABLES = [
    ("clients", """
        CREATE TABLE clients (
            id VARCHAR(36) PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(255) NOT NULL UNIQUE,
            domain VARCHAR(255),
            plan VARCHAR(20) NOT NULL DEFAULT 'STARTER',
            active BOOLEAN NOT NULL DEFAULT TRUE,
            api_key VARCHAR(64) UNIQUE,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """, []),
    ("users", """
        CREATE TABLE users (
            id VARCHAR(36) PRIMARY KEY,
            email VARCHAR(255) NOT NULL UNIQUE,
            name VARCHAR(255),
            password_hash VARCHAR(255) NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """, []),
    ("memberships", """
        CREATE TABLE memberships (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            client_id VARCHAR(36) NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            role VARCHAR(20) NOT NULL DEFAULT 'VIEWER',
            status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT uq_memberships_user_client UNIQUE (user_id, client_id)
        )
    """, [
        "CREATE INDEX idx_memberships_user ON memberships(user_id)",
        "CREATE INDEX idx_memberships_client ON memberships(client_id)",
    ]),
    ("policies", """
        CREATE TABLE policies (
            id VARCHAR(36) PRIMARY KEY,
            client_id VARCHAR(36) NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            description TEXT,
            rules JSON,
            version INTEGER NOT NULL DEFAULT 1,
            active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """, [
        "CREATE INDEX idx_policies_client ON policies(client_id)",
    ]),
    ("subject_entities", """
        CREATE TABLE subject_entities (
            id VARCHAR(36) PRIMARY KEY,
            client_id VARCHAR(36) NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            external_id VARCHAR(255) NOT NULL,
            name VARCHAR(255) NOT NULL,
            domain VARCHAR(255),
            industry VARCHAR(255),
            country VARCHAR(100),
            metadata_json JSON,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT uq_subject_entities_client_external UNIQUE (client_id, external_id)
        )
    """, [
        "CREATE INDEX idx_subject_entities_client ON subject_entities(client_id)",
    ]),
    ("deals", """
        CREATE TABLE deals (
            id VARCHAR(36) PRIMARY KEY,
            subject_entity_id VARCHAR(36) NOT NULL REFERENCES subject_entities(id) ON DELETE CASCADE,
            external_deal_id VARCHAR(255),
            amount NUMERIC(14, 2),
            currency VARCHAR(3),
            discount_requested DOUBLE PRECISION,
            stage VARCHAR(20) NOT NULL DEFAULT 'OPEN',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """, [
        "CREATE INDEX idx_deals_subject_entity ON deals(subject_entity_id)",
        "CREATE INDEX idx_deals_external ON deals(external_deal_id)",
    ]),
    ("decisions", """
        CREATE TABLE decisions (
            id VARCHAR(36) PRIMARY KEY,
            client_id VARCHAR(36) NOT NULL REFERENCES clients(id),
            subject_entity_id VARCHAR(36) NOT NULL REFERENCES subject_entities(id),
            deal_id VARCHAR(36) REFERENCES deals(id),
            context_key VARCHAR(255),
            decision_type VARCHAR(30) NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'PROPOSED',
            urgency VARCHAR(20) NOT NULL DEFAULT 'NORMAL',
            recommended_action VARCHAR(50),
            recommended_confidence VARCHAR(20),
            suggested_conditions JSON,
            final_action TEXT,
            decided_by VARCHAR(36),
            expires_at TIMESTAMP,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            decided_at TIMESTAMP
        )
    """, [
        "CREATE INDEX idx_decisions_client ON decisions(client_id)",
        "CREATE INDEX idx_decisions_subject_entity ON decisions(subject_entity_id)",
        "CREATE INDEX idx_decisions_status ON decisions(status)",
    ]),
    ("decision_context_snapshots", """
        CREATE TABLE decision_context_snapshots (
            id VARCHAR(36) PRIMARY KEY,
            decision_id VARCHAR(36) NOT NULL UNIQUE REFERENCES decisions(id),
            signals JSON NOT NULL,
            policies JSON,
            agent_rationale TEXT,
            agent_model VARCHAR(100),
            processing_time_ms INTEGER,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """, []),
    ("decision_human_overrides", """
        CREATE TABLE decision_human_overrides (
            id VARCHAR(36) PRIMARY KEY,
            decision_id VARCHAR(36) NOT NULL REFERENCES decisions(id),
            user_id VARCHAR(36) NOT NULL,
            override_action VARCHAR(20) NOT NULL,
            override_reason TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """, [
        "CREATE INDEX idx_decision_overrides_decision ON decision_human_overrides(decision_id)",
    ]),
    ("decision_outcomes", """
        CREATE TABLE decision_outcomes (
            id VARCHAR(36) PRIMARY KEY,
            decision_id VARCHAR(36) NOT NULL REFERENCES decisions(id),
            user_id VARCHAR(36),
            outcome_type VARCHAR(30) NOT NULL,
            notes TEXT,
            recorded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """, [
        "CREATE INDEX idx_decision_outcomes_decision ON decision_outcomes(decision_id)",
    ]),
    ("decision_links", """
        CREATE TABLE decision_links (
            id VARCHAR(36) PRIMARY KEY,
            from_decision_id VARCHAR(36) NOT NULL REFERENCES decisions(id),
            to_decision_id VARCHAR(36) NOT NULL REFERENCES decisions(id),
            relationship_type VARCHAR(30) NOT NULL,
            confidence NUMERIC(3, 2),
            notes TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT uq_decision_links_from_to_type UNIQUE (from_decision_id, to_decision_id, relationship_type)
        )
    """, [
        "CREATE INDEX idx_decision_links_from ON decision_links(from_decision_id)",
        "CREATE INDEX idx_decision_links_to ON decision_links(to_decision_id)",
    ]),
]


def table_exists(conn, table_name: str) -> bool:
    """Check if a table exists in the database."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.tables
            WHERE table_name = :table_name
        )
    """), {"table_name": table_name})
    return result.fetchone()[0]


def run_migration():
    """Create every decision engine table that does not exist yet."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        for table_name, ddl, indexes in TABLES:
            if table_exists(conn, table_name):
                print(f"{table_name} table already exists")
                continue

            conn.execute(text(ddl))
            for index_ddl in indexes:
                conn.execute(text(index_ddl))
            print(f"Created {table_name} table")

        conn.commit()
        print("\nDecision engine migration completed successfully!")


if __name__ == "__main__":
    run_migration()
