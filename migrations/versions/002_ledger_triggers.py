"""ledger_triggers

Revision ID: 002_ledger_triggers
Revises: 001_initial
Create Date: 2026-09-28 12:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '002_ledger_triggers'
down_revision: Union[str, None] = '001_initial'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


PAYMENT_FUNCTION = """
CREATE OR REPLACE FUNCTION apply_reservation_payment() RETURNS trigger AS $$
DECLARE
    v_total NUMERIC(12, 2);
    v_paid NUMERIC(12, 2);
    v_balance NUMERIC(12, 2);
BEGIN
    SELECT COALESCE(total_amount, 0), COALESCE(paid_amount, 0)
      INTO v_total, v_paid
      FROM reservations
     WHERE id = NEW.reservation_id
       FOR UPDATE;

    v_balance := v_total - v_paid;
    IF NEW.amount > v_balance THEN
        RAISE EXCEPTION 'Payment amount (%) exceeds remaining balance (%)', NEW.amount, v_balance
            USING HINT = format('Remaining balance is %s. Reduce the payment amount.', v_balance);
    END IF;

    UPDATE reservations
       SET paid_amount = v_paid + NEW.amount,
           balance_amount = v_total - (v_paid + NEW.amount),
           updated_at = now()
     WHERE id = NEW.reservation_id;

    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

# Service income is booked in its own currency (pending items) or the account
# currency (paid on the spot); the reservation columns are kept in the
# reservation currency through the location's USD pivot rates.
SERVICE_INCOME_FUNCTION = """
CREATE OR REPLACE FUNCTION apply_service_income() RETURNS trigger AS $$
DECLARE
    r RECORD;
    v_rate_from NUMERIC(18, 6);
    v_rate_to NUMERIC(18, 6);
    v_amount NUMERIC(12, 2);
    v_paid NUMERIC(12, 2);
BEGIN
    SELECT id, tenant_id, location_id, currency, COALESCE(total_amount, 0) AS total_amount,
           COALESCE(paid_amount, 0) AS paid_amount
      INTO r
      FROM reservations
     WHERE id = NEW.booking_id
       FOR UPDATE;

    IF NOT FOUND THEN
        RETURN NEW;
    END IF;

    v_amount := NEW.amount;
    IF NEW.currency <> r.currency THEN
        SELECT usd_rate INTO v_rate_from FROM currency_rates
         WHERE tenant_id = r.tenant_id AND location_id = r.location_id AND currency_code = NEW.currency;
        SELECT usd_rate INTO v_rate_to FROM currency_rates
         WHERE tenant_id = r.tenant_id AND location_id = r.location_id AND currency_code = r.currency;
        IF NEW.currency = 'USD' THEN v_rate_from := 1; END IF;
        IF r.currency = 'USD' THEN v_rate_to := 1; END IF;

        IF v_rate_from IS NULL OR v_rate_to IS NULL THEN
            RAISE WARNING 'No rate for % -> %, income % applied unconverted', NEW.currency, r.currency, NEW.id;
        ELSE
            v_amount := ROUND(NEW.amount / v_rate_from * v_rate_to, 2);
        END IF;
    END IF;

    v_paid := r.paid_amount;
    IF NEW.payment_method <> 'pending' THEN
        v_paid := v_paid + v_amount;
    END IF;

    UPDATE reservations
       SET total_amount = r.total_amount + v_amount,
           paid_amount = v_paid,
           balance_amount = r.total_amount + v_amount - v_paid,
           updated_at = now()
     WHERE id = r.id;

    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""


def upgrade() -> None:
    conn = op.get_bind()

    # Triggers are PostgreSQL only; on SQLite the ledger computes totals from rows
    if conn.dialect.name != 'postgresql':
        print(f"{conn.dialect.name} detected: Skipping ledger triggers")
        return

    op.execute(sa.text(PAYMENT_FUNCTION))
    op.execute(sa.text("""
        CREATE TRIGGER trg_payments_apply
        BEFORE INSERT ON payments
        FOR EACH ROW EXECUTE FUNCTION apply_reservation_payment()
    """))

    op.execute(sa.text(SERVICE_INCOME_FUNCTION))
    op.execute(sa.text("""
        CREATE TRIGGER trg_income_apply_service
        AFTER INSERT ON income
        FOR EACH ROW
        WHEN (NEW.booking_id IS NOT NULL AND NEW.type = 'service')
        EXECUTE FUNCTION apply_service_income()
    """))


def downgrade() -> None:
    conn = op.get_bind()

    if conn.dialect.name != 'postgresql':
        return

    op.execute(sa.text("DROP TRIGGER IF EXISTS trg_income_apply_service ON income"))
    op.execute(sa.text("DROP FUNCTION IF EXISTS apply_service_income()"))
    op.execute(sa.text("DROP TRIGGER IF EXISTS trg_payments_apply ON payments"))
    op.execute(sa.text("DROP FUNCTION IF EXISTS apply_reservation_payment()"))
