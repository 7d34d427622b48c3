"""
Database Migration: Create Bank Reconciliation Tables

Creates the statement, statement transaction and payment tables for
PostgreSQL deployments, including the UNIQUE constraints that keep a
payment linked to at most one transaction.

Development and test databases are created by init_db() from the ORM
metadata instead.
"""

import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text
from database.connection import engine


SQL_STATEMENTS = [
    # Imported statements
    """
    CREATE TABLE IF NOT EXISTS public.bank_statements (
        id VARCHAR(36) PRIMARY KEY,
        tenant_id VARCHAR(36) NOT NULL,

        file_name VARCHAR(255) NOT NULL,
        file_type VARCHAR(20) NOT NULL DEFAULT 'OFX',
        fingerprint VARCHAR(128) NOT NULL,
        bank_account_id VARCHAR(36),

        period_start DATE,
        period_end DATE,
        starting_balance NUMERIC(14,2),
        ending_balance NUMERIC(14,2),

        total_transactions INTEGER NOT NULL DEFAULT 0,
        total_matched INTEGER NOT NULL DEFAULT 0,
        total_pending INTEGER NOT NULL DEFAULT 0,
        percent_matched NUMERIC(5,2) NOT NULL DEFAULT 0,
        status VARCHAR(20) NOT NULL DEFAULT 'PENDING',

        imported_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

        CONSTRAINT uq_bank_statements_tenant_fingerprint UNIQUE (tenant_id, fingerprint),
        CONSTRAINT bank_statements_status_check
            CHECK (status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED')),
        CONSTRAINT bank_statements_counts_check
            CHECK (total_matched <= total_transactions)
    )
    """,

    # Statement line items
    """
    CREATE TABLE IF NOT EXISTS public.bank_statement_transactions (
        id VARCHAR(36) PRIMARY KEY,
        tenant_id VARCHAR(36) NOT NULL,
        statement_id VARCHAR(36) NOT NULL REFERENCES public.bank_statements(id),
        line_number INTEGER NOT NULL,

        transaction_date DATE NOT NULL,
        posting_date DATE,
        direction VARCHAR(10) NOT NULL,
        amount NUMERIC(12,2) NOT NULL,
        description TEXT,
        bank_identifier VARCHAR(255),
        reference VARCHAR(255),
        bank_category VARCHAR(100),

        status VARCHAR(20) NOT NULL DEFAULT 'UNMATCHED',
        payment_id VARCHAR(36),
        match_method VARCHAR(20),
        matched_at TIMESTAMPTZ,
        note TEXT,

        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

        CONSTRAINT uq_bank_statement_transactions_payment UNIQUE (payment_id),
        CONSTRAINT uq_bank_statement_transactions_line UNIQUE (statement_id, line_number),
        CONSTRAINT bank_statement_transactions_direction_check
            CHECK (direction IN ('CREDIT', 'DEBIT')),
        CONSTRAINT bank_statement_transactions_status_check
            CHECK (status IN ('UNMATCHED', 'MATCHED', 'IGNORED')),
        CONSTRAINT bank_statement_transactions_amount_check
            CHECK (amount >= 0),
        CONSTRAINT bank_statement_transactions_matched_check
            CHECK ((status = 'MATCHED') = (payment_id IS NOT NULL))
    )
    """,

    # Payments (reconciliation columns)
    """
    CREATE TABLE IF NOT EXISTS public.payments (
        id VARCHAR(36) PRIMARY KEY,
        tenant_id VARCHAR(36) NOT NULL,
        payment_date DATE NOT NULL,
        amount NUMERIC(12,2) NOT NULL,
        payment_type VARCHAR(30) NOT NULL DEFAULT 'PIX',
        order_number VARCHAR(30),
        customer_name VARCHAR(255),
        reconciled BOOLEAN NOT NULL DEFAULT false,
        bank_transaction_id VARCHAR(36),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

        CONSTRAINT uq_payments_bank_transaction UNIQUE (bank_transaction_id),
        CONSTRAINT payments_reconciled_check
            CHECK (reconciled = (bank_transaction_id IS NOT NULL))
    )
    """,

    # Indexes
    "CREATE INDEX IF NOT EXISTS idx_bank_statements_tenant_imported ON public.bank_statements(tenant_id, imported_at)",
    "CREATE INDEX IF NOT EXISTS idx_bank_txn_tenant ON public.bank_statement_transactions(tenant_id)",
    "CREATE INDEX IF NOT EXISTS idx_bank_txn_statement_status ON public.bank_statement_transactions(statement_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_bank_txn_date ON public.bank_statement_transactions(transaction_date)",
    "CREATE INDEX IF NOT EXISTS idx_payments_window ON public.payments(tenant_id, reconciled, payment_date, amount)",
]


async def run_migration():
    """Run the migration."""
    print("Starting bank reconciliation tables migration...")

    async with engine.begin() as conn:
        for i, sql in enumerate(SQL_STATEMENTS):
            try:
                await conn.execute(text(sql))
                print(f"  ✓ Statement {i+1}/{len(SQL_STATEMENTS)} executed")
            except Exception as e:
                print(f"  ✗ Statement {i+1} failed: {e}")
                raise

    print("Migration completed successfully!")


if __name__ == "__main__":
    asyncio.run(run_migration())
