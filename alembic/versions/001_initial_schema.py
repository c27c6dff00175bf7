"""001 – Initial schema: timekeeping sources, CDO ledger, audit trail.

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-08-01 09:00:00.000000+08:00
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
    ("shift_mode", ["AM", "PM", "AMPM"]),
    ("approval_status", ["For Approval", "Approved", "Returned", "Cancelled"]),
    ("created_by_kind", ["portal", "staff"]),
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

    # ── 1. punch_logs ─────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE punch_logs (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id  UUID NOT NULL,
            punched_at   TIMESTAMPTZ NOT NULL,
            source       VARCHAR(50) DEFAULT 'biometric',
            device_id    VARCHAR(50),
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_punch_logs_emp_time ON punch_logs (employee_id, punched_at)"
    )

    # ── 2. shift_schedules ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE shift_schedules (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name            VARCHAR(100) NOT NULL UNIQUE,
            mode            shift_mode NOT NULL,
            checkin_time    TIME,
            checkout_time   TIME,
            break_out_time  TIME,
            break_in_time   TIME,
            slot_windows    JSONB,
            credits         DOUBLE PRECISION DEFAULT 1.0,
            grace_minutes   INTEGER DEFAULT 0,
            is_active       BOOLEAN DEFAULT TRUE,
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 3. employee_shift_assignments ─────────────────────────────────────
    op.execute("""
        CREATE TABLE employee_shift_assignments (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id     UUID NOT NULL,
            shift_id        UUID NOT NULL REFERENCES shift_schedules(id),
            effective_from  DATE,
            effective_to    DATE,
            is_active       BOOLEAN DEFAULT TRUE,
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_shift_assignments_employee ON employee_shift_assignments (employee_id)"
    )

    # ── 4. holidays ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name          VARCHAR(150) NOT NULL,
            holiday_date  DATE NOT NULL,
            is_recurring  BOOLEAN DEFAULT FALSE,
            holiday_type  VARCHAR(30) DEFAULT 'regular',
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 5. locator_slips ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE locator_slips (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id     UUID NOT NULL,
            locator_no      VARCHAR(30) NOT NULL,
            locator_date    DATE NOT NULL,
            departure_time  TIME NOT NULL,
            arrival_time    TIME NOT NULL,
            destination     VARCHAR(255),
            purpose         TEXT,
            status          VARCHAR(30),
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_locator_slips_emp_date ON locator_slips (employee_id, locator_date)"
    )

    # ── 6. fix_log_requests ───────────────────────────────────────────────
    op.execute("""
        CREATE TABLE fix_log_requests (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id  UUID NOT NULL,
            log_date     DATE NOT NULL,
            am_checkin   TIME,
            am_checkout  TIME,
            pm_checkin   TIME,
            pm_checkout  TIME,
            reason       TEXT,
            status       VARCHAR(30),
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_fix_log_requests_emp_date ON fix_log_requests (employee_id, log_date)"
    )

    # ── 7. leave_records + leave_record_dates ─────────────────────────────
    op.execute("""
        CREATE TABLE leave_records (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id  UUID NOT NULL,
            leave_no     VARCHAR(30) NOT NULL,
            leave_type   VARCHAR(100) NOT NULL,
            status       VARCHAR(30),
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE leave_record_dates (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_id    UUID NOT NULL REFERENCES leave_records(id) ON DELETE CASCADE,
            leave_date  DATE NOT NULL,
            CONSTRAINT uq_leave_record_date UNIQUE (leave_id, leave_date)
        )
    """)

    # ── 8. travel_orders + dates + participants ───────────────────────────
    op.execute("""
        CREATE TABLE travel_orders (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            travel_no    VARCHAR(30) NOT NULL,
            destination  VARCHAR(255),
            purpose      TEXT,
            status       VARCHAR(30),
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE travel_order_dates (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            travel_id    UUID NOT NULL REFERENCES travel_orders(id) ON DELETE CASCADE,
            travel_date  DATE NOT NULL,
            CONSTRAINT uq_travel_order_date UNIQUE (travel_id, travel_date)
        )
    """)
    op.execute("""
        CREATE TABLE travel_participants (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            travel_id    UUID NOT NULL REFERENCES travel_orders(id) ON DELETE CASCADE,
            employee_id  UUID NOT NULL,
            CONSTRAINT uq_travel_participant UNIQUE (travel_id, employee_id)
        )
    """)

    # ── 9. cdo_transactions ───────────────────────────────────────────────
    op.execute("""
        CREATE TABLE cdo_transactions (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            cdo_no         VARCHAR(20) NOT NULL UNIQUE,
            employee_id    UUID NOT NULL,
            title          VARCHAR(255) NOT NULL,
            purpose        TEXT,
            earned_credit  INTEGER NOT NULL,
            used_credit    INTEGER NOT NULL DEFAULT 0,
            is_consumed    BOOLEAN NOT NULL DEFAULT FALSE,
            status         approval_status NOT NULL DEFAULT 'For Approval',
            created_by     created_by_kind NOT NULL DEFAULT 'portal',
            created_by_id  UUID,
            reviewed_by    UUID,
            reviewed_at    TIMESTAMPTZ,
            expires_at     TIMESTAMPTZ NOT NULL,
            version        INTEGER NOT NULL DEFAULT 1,
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            updated_at     TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_cdo_earned_positive CHECK (earned_credit >= 1),
            CONSTRAINT ck_cdo_used_within_earned
                CHECK (used_credit >= 0 AND used_credit <= earned_credit)
        )
    """)
    op.execute(
        "CREATE INDEX ix_cdo_transactions_employee ON cdo_transactions (employee_id)"
    )

    # ── 10. cdo_workdates ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE cdo_workdates (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            transaction_id  UUID NOT NULL REFERENCES cdo_transactions(id) ON DELETE CASCADE,
            work_date       DATE NOT NULL,
            CONSTRAINT uq_cdo_workdate UNIQUE (transaction_id, work_date)
        )
    """)

    # ── 11. cdo_consume_entries ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE cdo_consume_entries (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            transaction_id  UUID NOT NULL REFERENCES cdo_transactions(id) ON DELETE CASCADE,
            employee_id     UUID NOT NULL,
            use_date        DATE NOT NULL,
            reason          TEXT NOT NULL,
            status          approval_status NOT NULL DEFAULT 'For Approval',
            created_by      created_by_kind NOT NULL DEFAULT 'portal',
            created_by_id   UUID,
            reviewed_by     UUID,
            reviewed_at     TIMESTAMPTZ,
            version         INTEGER NOT NULL DEFAULT 1,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            updated_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_cdo_entries_tx_date ON cdo_consume_entries (transaction_id, use_date)"
    )
    op.execute(
        "CREATE INDEX ix_cdo_entries_emp_date ON cdo_consume_entries (employee_id, use_date)"
    )
    # One live use-date per transaction and day
    op.execute("""
        CREATE UNIQUE INDEX uq_cdo_entries_live_date ON cdo_consume_entries (transaction_id, use_date)
        WHERE status IN ('For Approval', 'Approved')
    """)

    # ── 12. audit_trail ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID,
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            ip_address   INET,
            user_agent   TEXT,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail (actor_id)")
    op.execute(
        "CREATE INDEX ix_audit_trail_entity ON audit_trail (entity_type, entity_id)"
    )
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail (created_at)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "cdo_consume_entries",
        "cdo_workdates",
        "cdo_transactions",
        "travel_participants",
        "travel_order_dates",
        "travel_orders",
        "leave_record_dates",
        "leave_records",
        "fix_log_requests",
        "locator_slips",
        "holidays",
        "employee_shift_assignments",
        "shift_schedules",
        "punch_logs",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    # Drop enum types
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    # Drop extensions
    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
