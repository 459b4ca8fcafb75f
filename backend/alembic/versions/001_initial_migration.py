"""Initial migration: create tournament, category, bracket, match, match_event tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tournament",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "category",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("category_type", sa.String(), nullable=False),
        sa.Column("bracket_kind", sa.String(), nullable=False),
        sa.Column("seeding_method", sa.String(), nullable=False),
        sa.Column("match_format", sa.String(), nullable=False),
        sa.Column("scoring_format", sa.String(), nullable=False),
        sa.Column("third_place_playoff", sa.Boolean(), nullable=False),
        sa.Column("playoff_size", sa.Integer(), nullable=False),
        sa.Column("best_of", sa.Integer(), nullable=True),
        sa.Column("points_to_win", sa.Integer(), nullable=True),
        sa.Column("win_by", sa.Integer(), nullable=True),
        sa.Column("point_cap", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.UniqueConstraint("tournament_id", "name", name="uq_tournament_category"),
    )
    op.create_index("ix_category_tournament_id", "category", ["tournament_id"])

    op.create_table(
        "bracket",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("total_rounds", sa.Integer(), nullable=False),
        sa.Column("current_round", sa.Integer(), nullable=False),
        sa.Column("participants_count", sa.Integer(), nullable=False),
        sa.Column("matches_count", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("third_place_playoff", sa.Boolean(), nullable=False),
        sa.Column("winner_ref", sa.String(), nullable=True),
        sa.Column("runner_up_ref", sa.String(), nullable=True),
        sa.Column("third_place_ref", sa.String(), nullable=True),
        sa.Column("fourth_place_ref", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.ForeignKeyConstraint(["category_id"], ["category.id"]),
        sa.UniqueConstraint("category_id", name="uq_bracket_category"),
    )
    op.create_index("ix_bracket_tournament_id", "bracket", ["tournament_id"])

    op.create_table(
        "match",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bracket_id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("match_code", sa.String(), nullable=False),
        sa.Column("match_number", sa.Integer(), nullable=False),
        sa.Column("bracket_side", sa.String(), nullable=False),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("match_position", sa.Integer(), nullable=False),
        # Slots
        sa.Column("slot_a_ref", sa.String(), nullable=True),
        sa.Column("slot_b_ref", sa.String(), nullable=True),
        sa.Column("slot_a_seed", sa.Integer(), nullable=True),
        sa.Column("slot_b_seed", sa.Integer(), nullable=True),
        sa.Column("placeholder_side_a", sa.String(), nullable=False),
        sa.Column("placeholder_side_b", sa.String(), nullable=False),
        # Upstream sources and downstream targets
        sa.Column("source_match_a_id", sa.Integer(), nullable=True),
        sa.Column("source_match_b_id", sa.Integer(), nullable=True),
        sa.Column("source_a_role", sa.String(), nullable=True),
        sa.Column("source_b_role", sa.String(), nullable=True),
        sa.Column("source_a_standing", sa.Integer(), nullable=True),
        sa.Column("source_b_standing", sa.Integer(), nullable=True),
        sa.Column("winner_next_match_id", sa.Integer(), nullable=True),
        sa.Column("winner_next_slot", sa.String(), nullable=True),
        sa.Column("loser_next_match_id", sa.Integer(), nullable=True),
        sa.Column("loser_next_slot", sa.String(), nullable=True),
        # Advisory assignment
        sa.Column("court_id", sa.Integer(), nullable=True),
        sa.Column("referee_id", sa.String(), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("scheduled_time", sa.Time(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        # Score
        sa.Column("score_json", sa.JSON(), nullable=True),
        sa.Column("final_score", sa.String(), nullable=True),
        sa.Column("sets_won_a", sa.Integer(), nullable=False),
        sa.Column("sets_won_b", sa.Integer(), nullable=False),
        sa.Column("games_won_a", sa.Integer(), nullable=False),
        sa.Column("games_won_b", sa.Integer(), nullable=False),
        sa.Column("points_won_a", sa.Integer(), nullable=False),
        sa.Column("points_won_b", sa.Integer(), nullable=False),
        sa.Column("submitted_by", sa.String(), nullable=True),
        sa.Column("winner_ref", sa.String(), nullable=True),
        sa.Column("loser_ref", sa.String(), nullable=True),
        sa.Column("winner_slot", sa.String(), nullable=True),
        # Exceptional transitions
        sa.Column("forfeit_reason", sa.String(), nullable=True),
        sa.Column("forfeiting_side", sa.String(), nullable=True),
        sa.Column("postpone_reason", sa.String(), nullable=True),
        sa.Column("reschedule_date", sa.Date(), nullable=True),
        sa.Column("cancel_reason", sa.String(), nullable=True),
        # Flags
        sa.Column("is_bye", sa.Boolean(), nullable=False),
        sa.Column("is_final", sa.Boolean(), nullable=False),
        sa.Column("is_semifinal", sa.Boolean(), nullable=False),
        sa.Column("is_quarterfinal", sa.Boolean(), nullable=False),
        sa.Column("score_verified", sa.Boolean(), nullable=False),
        sa.Column("score_verified_by", sa.String(), nullable=True),
        sa.Column("score_verified_at", sa.DateTime(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("lock_version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["bracket_id"], ["bracket.id"]),
        sa.ForeignKeyConstraint(["category_id"], ["category.id"]),
        sa.ForeignKeyConstraint(["source_match_a_id"], ["match.id"]),
        sa.ForeignKeyConstraint(["source_match_b_id"], ["match.id"]),
        sa.ForeignKeyConstraint(["winner_next_match_id"], ["match.id"]),
        sa.ForeignKeyConstraint(["loser_next_match_id"], ["match.id"]),
        sa.UniqueConstraint(
            "bracket_id", "bracket_side", "round_number", "match_position", name="uq_match_bracket_position"
        ),
    )
    op.create_index("ix_match_bracket_id", "match", ["bracket_id"])
    op.create_index("ix_match_status", "match", ["status"])
    op.create_index("ix_match_winner_next_match_id", "match", ["winner_next_match_id"])
    op.create_index("ix_match_loser_next_match_id", "match", ["loser_next_match_id"])

    op.create_table(
        "match_event",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bracket_id", sa.Integer(), nullable=False),
        sa.Column("match_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("winner_ref", sa.String(), nullable=True),
        sa.Column("loser_ref", sa.String(), nullable=True),
        sa.Column("propagated", sa.Boolean(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("dispatched_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["bracket_id"], ["bracket.id"]),
        sa.ForeignKeyConstraint(["match_id"], ["match.id"]),
    )
    op.create_index("ix_match_event_bracket_id", "match_event", ["bracket_id"])
    op.create_index("ix_match_event_match_id", "match_event", ["match_id"])


def downgrade() -> None:
    op.drop_index("ix_match_event_match_id", table_name="match_event")
    op.drop_index("ix_match_event_bracket_id", table_name="match_event")
    op.drop_table("match_event")
    op.drop_index("ix_match_loser_next_match_id", table_name="match")
    op.drop_index("ix_match_winner_next_match_id", table_name="match")
    op.drop_index("ix_match_status", table_name="match")
    op.drop_index("ix_match_bracket_id", table_name="match")
    op.drop_table("match")
    op.drop_index("ix_bracket_tournament_id", table_name="bracket")
    op.drop_table("bracket")
    op.drop_index("ix_category_tournament_id", table_name="category")
    op.drop_table("category")
    op.drop_table("tournament")
