"""row level security policies (postgres)

Revision ID: 0002_row_level_security
Revises: 0001_init
Create Date: 2026-10-19

The USING clauses are compiled from the same rule tables the application
filters with (tenantbridge.policy), so both layers admit the same rows.
They read the transaction-local settings pushed by the context store.
Table owners bypass these policies; the application should connect as a
non-owner role for them to bind. Units of work that run before any
context exists (principal lookup, organization signup, invitation lookup)
push the "bootstrap" role, which every policy admits.
"""
from alembic import op

from tenantbridge.policy import rls_drop_statements, rls_statements


revision = "0002_row_level_security"
down_revision = "0001_init"
branch_labels = None
depends_on = None


_NIL_UUID = "00000000-0000-0000-0000-000000000000"

FUNCTIONS = [
    f"""
    CREATE OR REPLACE FUNCTION current_organization_id() RETURNS uuid
    LANGUAGE sql STABLE AS $$
        SELECT COALESCE(NULLIF(current_setting('app.current_organization_id', true), '')::uuid,
                        '{_NIL_UUID}'::uuid)
    $$
    """,
    f"""
    CREATE OR REPLACE FUNCTION current_user_id() RETURNS uuid
    LANGUAGE sql STABLE AS $$
        SELECT COALESCE(NULLIF(current_setting('app.current_user_id', true), '')::uuid,
                        '{_NIL_UUID}'::uuid)
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION current_user_role() RETURNS text
    LANGUAGE sql STABLE AS $$
        SELECT COALESCE(current_setting('app.current_user_role', true), '')
    $$
    """,
]


def upgrade():
    if op.get_bind().dialect.name != "postgresql":
        return

    for sql in FUNCTIONS:
        op.execute(sql)
    for sql in rls_statements():
        op.execute(sql)


def downgrade():
    if op.get_bind().dialect.name != "postgresql":
        return

    for sql in rls_drop_statements():
        op.execute(sql)
    op.execute("DROP FUNCTION IF EXISTS current_user_role()")
    op.execute("DROP FUNCTION IF EXISTS current_user_id()")
    op.execute("DROP FUNCTION IF EXISTS current_organization_id()")
