"""fiscal years, accounting settings, security and notification settings

Revision ID: 20261020_0002
Revises: 20261019_0001
Create Date: 2026-10-20 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261020_0002"
down_revision: Union[str, None] = "20261019_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _column_exists(inspector: sa.Inspector, table_name: str, column_name: str) -> bool:
    return column_name in {column["name"] for column in inspector.get_columns(table_name)}


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "fiscal_years"):
        op.create_table(
            "fiscal_years",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("closed_by_user_id", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("end_date > start_date", name="ck_fiscal_years_range"),
            sa.ForeignKeyConstraint(["closed_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )
        op.create_index("ix_fiscal_years_start_date", "fiscal_years", ["start_date"], unique=False)

    if not _table_exists(inspector, "security_settings"):
        op.create_table(
            "security_settings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("mfa_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("password_policy", sa.String(length=20), nullable=False, server_default="medium"),
            sa.Column("session_timeout_minutes", sa.Integer(), nullable=False, server_default="30"),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("id = 1", name="ck_security_settings_single_row"),
            sa.CheckConstraint("session_timeout_minutes >= 5", name="ck_security_settings_session_timeout"),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "notification_settings"):
        op.create_table(
            "notification_settings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email_notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("new_sale_notify", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("low_stock_notify", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("id = 1", name="ck_notification_settings_single_row"),
            sa.PrimaryKeyConstraint("id"),
        )

    # batch mode so SQLite can add the foreign keys by copying the table
    if not _column_exists(inspector, "journal_entries", "fiscal_year_id"):
        with op.batch_alter_table("journal_entries") as batch_op:
            batch_op.add_column(sa.Column("fiscal_year_id", sa.Integer(), nullable=True))
            batch_op.create_foreign_key(
                "fk_journal_entries_fiscal_year_id", "fiscal_years", ["fiscal_year_id"], ["id"]
            )
            batch_op.create_index("ix_journal_entries_fiscal_year_id", ["fiscal_year_id"], unique=False)

    if not _column_exists(inspector, "company_info", "current_fiscal_year_id"):
        with op.batch_alter_table("company_info") as batch_op:
            batch_op.add_column(sa.Column("current_fiscal_year_id", sa.Integer(), nullable=True))
            batch_op.add_column(sa.Column("retained_earnings_account_id", sa.Integer(), nullable=True))
            batch_op.create_foreign_key(
                "fk_company_info_current_fiscal_year_id", "fiscal_years", ["current_fiscal_year_id"], ["id"]
            )
            batch_op.create_foreign_key(
                "fk_company_info_retained_earnings_account_id",
                "chart_of_accounts",
                ["retained_earnings_account_id"],
                ["id"],
            )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if _column_exists(inspector, "company_info", "current_fiscal_year_id"):
        with op.batch_alter_table("company_info") as batch_op:
            batch_op.drop_constraint("fk_company_info_retained_earnings_account_id", type_="foreignkey")
            batch_op.drop_constraint("fk_company_info_current_fiscal_year_id", type_="foreignkey")
            batch_op.drop_column("retained_earnings_account_id")
            batch_op.drop_column("current_fiscal_year_id")

    if _column_exists(inspector, "journal_entries", "fiscal_year_id"):
        with op.batch_alter_table("journal_entries") as batch_op:
            batch_op.drop_index("ix_journal_entries_fiscal_year_id")
            batch_op.drop_constraint("fk_journal_entries_fiscal_year_id", type_="foreignkey")
            batch_op.drop_column("fiscal_year_id")

    for table_name in ("notification_settings", "security_settings", "fiscal_years"):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
