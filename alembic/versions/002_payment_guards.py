"""payment and access code guards

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 09:30:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add partial unique indexes and the payment status trigger."""
    # One pending payment per appointment / session
    op.create_index(
        "uq_payments_pending_appointment",
        "payments",
        ["appointment_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending' AND appointment_id IS NOT NULL"),
    )
    op.create_index(
        "uq_payments_pending_session",
        "payments",
        ["session_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending' AND session_id IS NOT NULL"),
    )

    # Access codes are unique among sessions that can still be joined
    op.create_index(
        "uq_teleconsultation_sessions_live_code",
        "teleconsultation_sessions",
        ["access_code"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'paid', 'active')"),
    )

    # ===================================================================
    # TRIGGER FUNCTION: payments only move out of pending, once
    # ===================================================================
    op.execute(
        """
        CREATE OR REPLACE FUNCTION enforce_payment_status_transition()
        RETURNS TRIGGER AS $$
        BEGIN
            IF OLD.status IS DISTINCT FROM NEW.status AND OLD.status <> 'pending' THEN
                RAISE EXCEPTION 'payment % is % and cannot become %',
                    OLD.id, OLD.status, NEW.status
                    USING ERRCODE = 'check_violation';
            END IF;

            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """
    )

    op.execute(
        """
        CREATE TRIGGER trigger_payment_status_transition
        BEFORE UPDATE OF status ON payments
        FOR EACH ROW
        EXECUTE FUNCTION enforce_payment_status_transition();
    """
    )


def downgrade() -> None:
    """Remove the guards."""
    op.execute("DROP TRIGGER IF EXISTS trigger_payment_status_transition ON payments")
    op.execute("DROP FUNCTION IF EXISTS enforce_payment_status_transition()")
    op.drop_index("uq_teleconsultation_sessions_live_code", table_name="teleconsultation_sessions")
    op.drop_index("uq_payments_pending_session", table_name="payments")
    op.drop_index("uq_payments_pending_appointment", table_name="payments")
