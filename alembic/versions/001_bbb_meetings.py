"""Create the bbb_meetings table.

Revision ID: 001_bbb_meetings
Revises:
Create Date: 2026-10-18

One row per meeting room in the tenant schema. Membership, libraries
and messages are owned by other services, so the table carries no
foreign keys. ``created`` and ``last_modified`` are epoch milliseconds.
"""

from typing import Sequence, Union

from alembic import context, op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_bbb_meetings"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Get the actual schema name from -x args
    cmd_kwargs = context.get_x_argument(as_dictionary=True)
    schema = cmd_kwargs.get("schema", "tenant")

    op.create_table(
        "bbb_meetings",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("tenant_alias", sa.String(255), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(1000), nullable=False),
        sa.Column("description", sa.Text(), server_default=sa.text("''"), nullable=False),
        sa.Column("record", sa.Boolean(), nullable=True),
        sa.Column("all_moderators", sa.Boolean(), nullable=True),
        sa.Column("wait_moderator", sa.Boolean(), nullable=True),
        sa.Column("visibility", sa.String(20), nullable=False),
        sa.Column("created", sa.BigInteger(), nullable=False),
        sa.Column("last_modified", sa.BigInteger(), nullable=False),
        schema="tenant",
    )

    op.execute(
        f'CREATE INDEX idx_bbb_meetings_created_by '
        f'ON "{schema}".bbb_meetings(created_by)'
    )


def downgrade() -> None:
    cmd_kwargs = context.get_x_argument(as_dictionary=True)
    schema = cmd_kwargs.get("schema", "tenant")

    op.execute(f'DROP INDEX IF EXISTS "{schema}".idx_bbb_meetings_created_by')
    op.drop_table("bbb_meetings", schema="tenant")
