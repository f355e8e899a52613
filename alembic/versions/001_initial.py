"""Initial migration — properties corpus and learning engine tables.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── properties ──
    op.create_table(
        "properties",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("feed_source", sa.String(50), nullable=False, server_default="manual"),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column("transaction_type", sa.String(30), nullable=False),
        sa.Column("property_type", sa.String(50), nullable=False),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("street", sa.String(255), nullable=True),
        sa.Column("urbanization", sa.String(255), nullable=True),
        sa.Column("suburb", sa.String(255), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("province", sa.String(100), nullable=True),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("coordinate_confidence", sa.Float, nullable=True),
        sa.Column("build_area", sa.Float, nullable=True),
        sa.Column("plot_area", sa.Float, nullable=True),
        sa.Column("terrace_area", sa.Float, nullable=True),
        sa.Column("bedrooms", sa.Integer, nullable=True),
        sa.Column("bathrooms", sa.Integer, nullable=True),
        sa.Column("sale_price", sa.Float, nullable=True),
        sa.Column("rental_price", sa.Float, nullable=True),
        sa.Column("features", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_properties_feed_source", "properties", ["feed_source"])
    op.create_index("ix_properties_transaction_type", "properties", ["transaction_type"])
    op.create_index("ix_properties_property_type", "properties", ["property_type"])
    op.create_index("ix_properties_city", "properties", ["city"])
    op.create_index("ix_properties_city_type", "properties", ["city", "property_type"])
    op.create_index("ix_properties_feed_reference", "properties", ["feed_source", "reference"])

    # ── location_relationships ──
    op.create_table(
        "location_relationships",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("source_name", sa.String(255), nullable=False),
        sa.Column("target_name", sa.String(255), nullable=False),
        sa.Column("frequency", sa.Integer, nullable=False, server_default="1"),
        sa.Column("base_confidence", sa.Float, nullable=False, server_default="0"),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tier", "source_name", "target_name", name="uq_location_relationship_edge"),
    )
    op.create_index("ix_location_relationships_tier", "location_relationships", ["tier"])
    op.create_index("ix_location_relationships_source_name", "location_relationships", ["source_name"])

    # ── discovered_locations ──
    op.create_table(
        "discovered_locations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("aliases", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("common_streets", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("frequency", sa.Integer, nullable=False, server_default="1"),
        sa.Column("first_seen", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tier", "name", name="uq_discovered_location"),
    )
    op.create_index("ix_discovered_locations_tier", "discovered_locations", ["tier"])


def downgrade() -> None:
    op.drop_table("discovered_locations")
    op.drop_table("location_relationships")
    op.drop_table("properties")
