"""Patient flow core: identities, visits, queues, triage, wards and beds.

Revision ID: 0001_patient_flow_core
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_patient_flow_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_ts", sa.DateTime(), nullable=False),
        sa.Column("actor", sa.String(), nullable=True),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=True),
    )
    op.create_index("ix_audit_log_entity_type_entity_id", "audit_log", ["entity_type", "entity_id"])

    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("mr_number", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("dob", sa.Date(), nullable=True),
        sa.Column("gender", sa.String(), nullable=False, server_default=sa.literal("unknown")),
        sa.Column("identification_type", sa.String(), nullable=False, server_default=sa.literal("none")),
        sa.Column("identification_number", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("is_unknown", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.literal("active")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("mr_number", name="uq_patients_mr_number"),
        sa.CheckConstraint("gender in ('male','female','other','unknown')", name="ck_patients_gender"),
        sa.CheckConstraint(
            "identification_type in ('cnic','passport','driving_license','none')",
            name="ck_patients_identification_type",
        ),
        sa.CheckConstraint("status in ('active','inactive')", name="ck_patients_status"),
    )
    op.create_index("ix_patients_phone", "patients", ["phone"])
    op.create_index("ix_patients_identification_number", "patients", ["identification_number"])

    op.create_table(
        "mr_number_sequence",
        sa.Column("year", sa.Integer(), primary_key=True),
        sa.Column("last_number", sa.Integer(), nullable=False),
    )

    op.create_table(
        "visits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("care_setting", sa.String(), nullable=False, server_default=sa.literal("opd")),
        sa.Column("department", sa.String(), nullable=True),
        sa.Column("doctor", sa.String(), nullable=True),
        sa.Column("state", sa.String(), nullable=False, server_default=sa.literal("registered")),
        sa.Column("priority", sa.String(), nullable=False, server_default=sa.literal("routine")),
        sa.Column("chief_complaint", sa.Text(), nullable=True),
        sa.Column("triage_level", sa.Integer(), nullable=True),
        sa.Column("triage_sla_minutes", sa.Integer(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "state in ('registered','waiting_vitals','in_vitals','waiting_doctor','in_consultation',"
            "'waiting_pharmacy','in_pharmacy','waiting_lab','in_lab','waiting_billing','in_billing',"
            "'completed','cancelled')",
            name="ck_visits_state",
        ),
        sa.CheckConstraint("priority in ('routine','urgent','emergency')", name="ck_visits_priority"),
        sa.CheckConstraint("care_setting in ('opd','emergency','ipd')", name="ck_visits_care_setting"),
    )
    op.create_index(
        "uq_visits_active_patient",
        "visits",
        ["patient_id"],
        unique=True,
        sqlite_where=sa.text("closed_at IS NULL"),
        postgresql_where=sa.text("closed_at IS NULL"),
    )
    op.create_index("ix_visits_state", "visits", ["state"])

    op.create_table(
        "visit_transitions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("visit_id", sa.Integer(), sa.ForeignKey("visits.id", ondelete="CASCADE"), nullable=False),
        sa.Column("transition", sa.String(), nullable=False),
        sa.Column("from_state", sa.String(), nullable=False),
        sa.Column("to_state", sa.String(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("actor", sa.String(), nullable=True),
    )
    op.create_index("ix_visit_transitions_visit_id", "visit_transitions", ["visit_id", "occurred_at"])

    op.create_table(
        "queue_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("visit_id", sa.Integer(), sa.ForeignKey("visits.id", ondelete="CASCADE"), nullable=False),
        sa.Column("station", sa.String(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False, server_default=sa.literal("routine")),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.literal("waiting")),
        sa.Column("enqueued_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("held_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("left_at", sa.DateTime(), nullable=True),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status in ('waiting','in_progress','on_hold','completed')", name="ck_queue_entries_status"
        ),
        sa.CheckConstraint(
            "station in ('registration','vitals','doctor','pharmacy','lab','billing','exit')",
            name="ck_queue_entries_station",
        ),
        sa.CheckConstraint("priority in ('routine','urgent','emergency')", name="ck_queue_entries_priority"),
    )
    op.create_index(
        "uq_queue_entries_open_visit",
        "queue_entries",
        ["visit_id"],
        unique=True,
        sqlite_where=sa.text("left_at IS NULL"),
        postgresql_where=sa.text("left_at IS NULL"),
    )
    op.create_index("ix_queue_entries_station_open", "queue_entries", ["station", "left_at", "status"])

    op.create_table(
        "wards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("ward_type", sa.String(), nullable=False, server_default=sa.literal("general")),
        sa.Column("floor", sa.String(), nullable=True),
        sa.UniqueConstraint("code", name="uq_wards_code"),
        sa.CheckConstraint("ward_type in ('general','private','icu','emergency')", name="ck_wards_ward_type"),
    )

    op.create_table(
        "beds",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ward_id", sa.Integer(), sa.ForeignKey("wards.id"), nullable=False),
        sa.Column("number", sa.String(), nullable=False),
        sa.Column("bed_type", sa.String(), nullable=False, server_default=sa.literal("general")),
        sa.Column("price_per_day", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.literal("available")),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("ward_id", "number", name="uq_beds_ward_number"),
        sa.CheckConstraint(
            "status in ('available','occupied','cleaning','maintenance')", name="ck_beds_status"
        ),
    )
    op.create_index("ix_beds_ward_status", "beds", ["ward_id", "status"])

    op.create_table(
        "admission_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("visit_id", sa.Integer(), sa.ForeignKey("visits.id"), nullable=True),
        sa.Column("department", sa.String(), nullable=False),
        sa.Column("requesting_doctor", sa.String(), nullable=False),
        sa.Column("diagnosis", sa.Text(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False, server_default=sa.literal("routine")),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.literal("pending")),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("bed_id", sa.Integer(), sa.ForeignKey("beds.id"), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("discharged_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status in ('pending','admitted','cancelled')", name="ck_admission_requests_status"
        ),
        sa.CheckConstraint(
            "priority in ('routine','urgent','emergency')", name="ck_admission_requests_priority"
        ),
    )
    op.create_index(
        "uq_admission_requests_bed_in_use",
        "admission_requests",
        ["bed_id"],
        unique=True,
        sqlite_where=sa.text("bed_id IS NOT NULL AND discharged_at IS NULL"),
        postgresql_where=sa.text("bed_id IS NOT NULL AND discharged_at IS NULL"),
    )
    op.create_index("ix_admission_requests_status", "admission_requests", ["status", "requested_at"])

    op.create_table(
        "triage_assessments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("visit_id", sa.Integer(), sa.ForeignKey("visits.id", ondelete="CASCADE"), nullable=True),
        sa.Column(
            "admission_request_id",
            sa.Integer(),
            sa.ForeignKey("admission_requests.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("complaint_id", sa.String(), nullable=False),
        sa.Column("discriminator_id", sa.String(), nullable=True),
        sa.Column("observed_json", sa.Text(), nullable=False, server_default=sa.literal("[]")),
        sa.Column("vitals_json", sa.Text(), nullable=True),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("sla_minutes", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("assessed_at", sa.DateTime(), nullable=False),
        sa.Column("assessed_by", sa.String(), nullable=True),
        sa.CheckConstraint("level between 1 and 5", name="ck_triage_assessments_level"),
    )
    op.create_index("ix_triage_assessments_visit_id", "triage_assessments", ["visit_id"])


def downgrade() -> None:
    op.drop_table("triage_assessments")
    op.drop_table("admission_requests")
    op.drop_table("beds")
    op.drop_table("wards")
    op.drop_table("queue_entries")
    op.drop_table("visit_transitions")
    op.drop_table("visits")
    op.drop_table("mr_number_sequence")
    op.drop_table("patients")
    op.drop_table("audit_log")
