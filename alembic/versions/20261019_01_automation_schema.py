"""automation schema: registry, rules, schedules, commands, execution logs

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "devices",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("owner_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=True),
    )
    op.create_index("ix_devices_id", "devices", ["id"])
    op.create_index("ix_devices_owner_id", "devices", ["owner_id"])

    op.create_table(
        "sensors",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("device_id", sa.String(length=64), sa.ForeignKey("devices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sensor_type", sa.String(length=32), nullable=False),
        sa.Column("unit", sa.String(length=16), nullable=True),
    )
    op.create_index("ix_sensors_id", "sensors", ["id"])
    op.create_index("ix_sensors_device_id", "sensors", ["device_id"])

    op.create_table(
        "actuators",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("device_id", sa.String(length=64), sa.ForeignKey("devices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("actuator_type", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=True),
    )
    op.create_index("ix_actuators_id", "actuators", ["id"])
    op.create_index("ix_actuators_device_id", "actuators", ["device_id"])

    op.create_table(
        "sensor_readings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("device_id", sa.String(length=64), sa.ForeignKey("devices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sensor_id", sa.String(length=64), sa.ForeignKey("sensors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("sensor_id", "timestamp", name="uq_sensor_readings_sensor_timestamp"),
    )
    op.create_index("ix_sensor_readings_device_id", "sensor_readings", ["device_id"])
    op.create_index("ix_sensor_readings_sensor_time", "sensor_readings", ["sensor_id", "timestamp"])

    op.create_table(
        "automation_rules",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("owner_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("on_threshold", sa.Float(), nullable=True),
        sa.Column("off_threshold", sa.Float(), nullable=True),
        sa.Column("current_actuator_state", sa.String(length=20), nullable=False, server_default="unknown"),
        sa.Column("last_state_change_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("min_state_change_interval_seconds", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trigger_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_triggered_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("priority >= 0 AND priority <= 1000", name="ck_automation_rules_priority"),
        sa.CheckConstraint(
            "(on_threshold IS NULL AND off_threshold IS NULL) OR (on_threshold IS NOT NULL AND off_threshold IS NOT NULL)",
            name="ck_automation_rules_hysteresis_pair",
        ),
        sa.CheckConstraint(
            "current_actuator_state IN ('on', 'off', 'unknown')",
            name="ck_automation_rules_actuator_state",
        ),
    )
    op.create_index(
        "ix_automation_rules_owner_active_priority",
        "automation_rules",
        ["owner_id", "is_active", "priority"],
    )

    op.create_table(
        "rule_condition_groups",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("rule_id", sa.String(length=36), sa.ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False),
        sa.Column("group_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("rule_id", "group_order", name="uq_rule_condition_groups_rule_order"),
    )
    op.create_index("ix_rule_condition_groups_rule_id", "rule_condition_groups", ["rule_id"])

    op.create_table(
        "rule_conditions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("rule_condition_groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sensor_id", sa.String(length=64), sa.ForeignKey("sensors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("operator", sa.String(length=20), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("value_max", sa.Float(), nullable=True),
        sa.Column("condition_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("group_id", "condition_order", name="uq_rule_conditions_group_order"),
        sa.CheckConstraint(
            "operator IN ('gt', 'lt', 'gte', 'lte', 'eq', 'neq', 'between')",
            name="ck_rule_conditions_operator",
        ),
        sa.CheckConstraint(
            "(operator = 'between' AND value_max IS NOT NULL AND value_max > value) OR (operator != 'between')",
            name="ck_rule_conditions_between_requires_max",
        ),
    )
    op.create_index("ix_rule_conditions_group_id", "rule_conditions", ["group_id"])
    op.create_index("ix_rule_conditions_sensor_id", "rule_conditions", ["sensor_id"])

    op.create_table(
        "rule_actions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("rule_id", sa.String(length=36), sa.ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False),
        sa.Column("actuator_id", sa.String(length=64), sa.ForeignKey("actuators.id", ondelete="CASCADE"), nullable=False),
        sa.Column("action_type", sa.String(length=20), nullable=False),
        sa.Column("action_value", sa.Integer(), nullable=True),
        sa.Column("action_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("rule_id", "actuator_id", name="uq_rule_actions_rule_actuator"),
        sa.CheckConstraint("action_type IN ('on', 'off', 'set_value')", name="ck_rule_actions_type"),
        sa.CheckConstraint(
            "(action_type = 'set_value' AND action_value IS NOT NULL) OR (action_type != 'set_value')",
            name="ck_rule_actions_set_value_requires_value",
        ),
        sa.CheckConstraint(
            "action_value IS NULL OR (action_value >= 0 AND action_value <= 100)",
            name="ck_rule_actions_value_range",
        ),
    )
    op.create_index("ix_rule_actions_rule_id", "rule_actions", ["rule_id"])
    op.create_index("ix_rule_actions_actuator_id", "rule_actions", ["actuator_id"])

    op.create_table(
        "schedule_rules",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "automation_rule_id",
            sa.String(length=36),
            sa.ForeignKey("automation_rules.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("schedule_type", sa.String(length=20), nullable=False),
        sa.Column("time_of_day", sa.String(length=8), nullable=False),
        sa.Column("days_of_week", sa.JSON(), nullable=True),
        sa.Column("cron_expression", sa.String(length=100), nullable=True),
        sa.Column("timezone", sa.String(length=50), nullable=False, server_default="UTC"),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "schedule_type IN ('once', 'daily', 'weekly', 'cron')",
            name="ck_schedule_rules_type",
        ),
        sa.CheckConstraint(
            "(schedule_type = 'cron' AND cron_expression IS NOT NULL) OR (schedule_type != 'cron')",
            name="ck_schedule_rules_cron_requires_expression",
        ),
    )
    op.create_index("ix_schedule_rules_next_run_at", "schedule_rules", ["next_run_at"])

    op.create_table(
        "actuator_commands",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actuator_id", sa.String(length=64), sa.ForeignKey("actuators.id", ondelete="CASCADE"), nullable=False),
        sa.Column("command_type", sa.String(length=20), nullable=False),
        sa.Column("value", sa.Float(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("rule_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_actuator_commands_actuator_id", "actuator_commands", ["actuator_id"])
    op.create_index("ix_actuator_commands_status_created", "actuator_commands", ["status", "created_at"])

    op.create_table(
        "rule_execution_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("rule_id", sa.String(length=36), sa.ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sensor_id", sa.String(length=64), nullable=True),
        sa.Column("sensor_value", sa.Float(), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("command_id", sa.String(length=36), nullable=True),
        sa.Column("execution_status", sa.String(length=20), nullable=False),
        sa.Column("skip_reason", sa.String(length=32), nullable=True),
        sa.Column("trigger_source", sa.String(length=16), nullable=False, server_default="reading"),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_rule_execution_logs_rule_time", "rule_execution_logs", ["rule_id", "executed_at"])
    op.create_index("ix_rule_execution_logs_time", "rule_execution_logs", ["executed_at"])


def downgrade() -> None:
    op.drop_index("ix_rule_execution_logs_time", table_name="rule_execution_logs")
    op.drop_index("ix_rule_execution_logs_rule_time", table_name="rule_execution_logs")
    op.drop_table("rule_execution_logs")
    op.drop_index("ix_actuator_commands_status_created", table_name="actuator_commands")
    op.drop_index("ix_actuator_commands_actuator_id", table_name="actuator_commands")
    op.drop_table("actuator_commands")
    op.drop_index("ix_schedule_rules_next_run_at", table_name="schedule_rules")
    op.drop_table("schedule_rules")
    op.drop_index("ix_rule_actions_actuator_id", table_name="rule_actions")
    op.drop_index("ix_rule_actions_rule_id", table_name="rule_actions")
    op.drop_table("rule_actions")
    op.drop_index("ix_rule_conditions_sensor_id", table_name="rule_conditions")
    op.drop_index("ix_rule_conditions_group_id", table_name="rule_conditions")
    op.drop_table("rule_conditions")
    op.drop_index("ix_rule_condition_groups_rule_id", table_name="rule_condition_groups")
    op.drop_table("rule_condition_groups")
    op.drop_index("ix_automation_rules_owner_active_priority", table_name="automation_rules")
    op.drop_table("automation_rules")
    op.drop_index("ix_sensor_readings_sensor_time", table_name="sensor_readings")
    op.drop_index("ix_sensor_readings_device_id", table_name="sensor_readings")
    op.drop_table("sensor_readings")
    op.drop_index("ix_actuators_device_id", table_name="actuators")
    op.drop_index("ix_actuators_id", table_name="actuators")
    op.drop_table("actuators")
    op.drop_index("ix_sensors_device_id", table_name="sensors")
    op.drop_index("ix_sensors_id", table_name="sensors")
    op.drop_table("sensors")
    op.drop_index("ix_devices_owner_id", table_name="devices")
    op.drop_index("ix_devices_id", table_name="devices")
    op.drop_table("devices")
