"""001 – Initial schema: users, leave requests, balance log, holidays, notifications.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("user_role", ["employee", "manager", "admin"]),
    ("leave_type", ["paid_leave", "permit", "sick"]),
    ("leave_status", ["pending", "approved", "rejected"]),
    ("balance_action", ["debit", "credit", "manual_set"]),
    ("notification_type", ["info", "approval", "alert"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. users ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            username    VARCHAR(100) NOT NULL UNIQUE,
            name        VARCHAR(200) NOT NULL,
            email       VARCHAR(255) NOT NULL UNIQUE,
            role        user_role NOT NULL DEFAULT 'employee',
            total_days  INTEGER NOT NULL DEFAULT 26,
            used_days   INTEGER NOT NULL DEFAULT 0,
            version_id  INTEGER NOT NULL DEFAULT 1,
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_users_total_days_non_negative CHECK (total_days >= 0),
            CONSTRAINT ck_users_used_days_non_negative CHECK (used_days >= 0)
        )
    """)

    # ── 2. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            requester_id  UUID NOT NULL REFERENCES users(id),
            leave_type    leave_type NOT NULL DEFAULT 'paid_leave',
            start_date    DATE NOT NULL,
            end_date      DATE NOT NULL,
            working_days  INTEGER NOT NULL,
            reason        TEXT,
            status        leave_status NOT NULL DEFAULT 'pending',
            approver_id   UUID REFERENCES users(id),
            approved_at   TIMESTAMPTZ,
            created_at    TIMESTAMPTZ DEFAULT NOW(),
            updated_at    TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_requests_range CHECK (end_date >= start_date),
            CONSTRAINT ck_leave_requests_working_days CHECK (working_days >= 1)
        )
    """)
    op.execute("CREATE INDEX ix_leave_requests_requester_id ON leave_requests (requester_id)")
    op.execute("CREATE INDEX ix_leave_requests_status ON leave_requests (status)")

    # ── 3. leave_status_changes ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_status_changes (
            id           SERIAL PRIMARY KEY,
            request_id   UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            from_status  leave_status,
            to_status    leave_status NOT NULL,
            changed_by   UUID NOT NULL REFERENCES users(id),
            changed_at   TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_status_changes_request_id ON leave_status_changes (request_id)"
    )

    # ── 4. balance_adjustments (append-only) ──────────────────────────────
    # related_request_id has no FK so entries survive request deletion
    op.execute("""
        CREATE TABLE balance_adjustments (
            id                  SERIAL PRIMARY KEY,
            user_id             UUID NOT NULL REFERENCES users(id),
            related_request_id  UUID,
            action              balance_action NOT NULL,
            amount              INTEGER NOT NULL,
            balance_before      INTEGER NOT NULL,
            balance_after       INTEGER NOT NULL,
            acting_user_id      UUID REFERENCES users(id),
            created_at          TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("CREATE INDEX ix_balance_adjustments_user_id ON balance_adjustments (user_id)")
    op.execute(
        "CREATE INDEX ix_balance_adjustments_related_request_id "
        "ON balance_adjustments (related_request_id)"
    )

    # ── 5. holidays ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            day         DATE NOT NULL UNIQUE,
            name        VARCHAR(200) NOT NULL,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 6. notifications ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id  UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type          notification_type DEFAULT 'info',
            title         VARCHAR(200) NOT NULL,
            message       TEXT NOT NULL,
            entity_type   VARCHAR(50),
            entity_id     UUID,
            is_read       BOOLEAN DEFAULT FALSE,
            read_at       TIMESTAMPTZ,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_notifications_recipient_id ON notifications (recipient_id)")

    # ── Seed: default administrator ───────────────────────────────────────
    op.execute("""
        INSERT INTO users (username, name, email, role)
        VALUES ('admin', 'Administrator', 'admin@example.com', 'admin')
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "notifications",
        "holidays",
        "balance_adjustments",
        "leave_status_changes",
        "leave_requests",
        "users",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    # Drop enum types
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
