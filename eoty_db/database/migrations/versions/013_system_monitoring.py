"""
Migration 013: System Monitoring

Metrics, alerting and scheduled-job bookkeeping.

Runs in `own` mode: the metric tables and the job tables are created in
two separate transactions, so a failure in the second group keeps the
first. Re-running after such a failure resumes at the job tables.
The scheduled job definitions themselves are seeded by system_defaults.
"""

import logging

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    true,
)

from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    create_table_if_not_exists,
    drop_table_if_exists,
    id_column,
    timestamps,
)

logger = logging.getLogger(__name__)

METRIC_TABLES = ("performance_alerts", "accuracy_metrics", "performance_metrics", "system_monitoring")
JOB_TABLES = ("database_maintenance", "job_execution_logs", "system_jobs")


def _now(name: str) -> Column:
    return Column(name, DateTime(timezone=True), server_default=func.now())


class SystemMonitoring(Migration):
    description = "Create monitoring, alerting and scheduled job tables"
    transactional_mode = TransactionalMode.OWN

    def apply(self, db):
        with db.transaction() as tx:
            self._create_metric_tables(tx)
        logger.info("Monitoring tables ready")

        with db.transaction() as tx:
            self._create_job_tables(tx)
        logger.info("Job tables ready")

    def _create_metric_tables(self, tx):
        create_table_if_not_exists(
            tx,
            "system_monitoring",
            id_column(),
            Column("metric", String(100), nullable=False),
            Column("value", Numeric(10, 2), nullable=False),
            Column("unit", String(50)),
            Column("details", Text),
            Column("error", Text),
            _now("timestamp"),
            Index("ix_system_monitoring_metric_timestamp", "metric", "timestamp"),
        )

        create_table_if_not_exists(
            tx,
            "performance_metrics",
            id_column(),
            Column("session_id", String(255), nullable=False),
            Column("operation", String(100), nullable=False),
            Column("response_time_ms", Integer, nullable=False),
            Column("within_threshold", Boolean, nullable=False),
            Column("threshold_ms", Integer, nullable=False),
            Column("metadata", JSON),
            _now("timestamp"),
            Index("ix_performance_metrics_operation_timestamp", "operation", "timestamp"),
        )

        create_table_if_not_exists(
            tx,
            "accuracy_metrics",
            id_column(),
            Column("session_id", String(255), nullable=False),
            Column("question", Text, nullable=False),
            Column("response", Text, nullable=False),
            Column("accuracy_score", Numeric(3, 2), nullable=False),
            Column("is_accurate", Boolean, nullable=False),
            Column("faith_alignment", Numeric(3, 2)),
            Column("moderation_flags", JSON),
            Column("user_feedback", String(50)),
            _now("timestamp"),
        )

        create_table_if_not_exists(
            tx,
            "performance_alerts",
            id_column(),
            Column("alert_type", String(50), nullable=False),
            Column("severity", String(20), nullable=False),
            Column("message", Text, nullable=False),
            Column("metric", String(50), nullable=False),
            Column("metric_value", Numeric(5, 2), nullable=False),
            Column("threshold", Numeric(5, 2), nullable=False),
            Column("status", String(50), server_default="active"),
            Column("acknowledged_by", Integer, ForeignKey("users.id")),
            Column("acknowledged_at", DateTime(timezone=True)),
            Column("resolved_at", DateTime(timezone=True)),
            _now("timestamp"),
            Index("ix_performance_alerts_status_severity", "status", "severity"),
        )

    def _create_job_tables(self, tx):
        create_table_if_not_exists(
            tx,
            "system_jobs",
            id_column(),
            Column("job_name", String(255), nullable=False, unique=True),
            Column("job_type", String(100), nullable=False),
            Column("schedule", String(100), nullable=False),
            Column("is_active", Boolean, server_default=true()),
            Column("status", String(50), server_default="idle"),
            Column("last_run_at", DateTime(timezone=True)),
            Column("last_run_result", Text),
            Column("last_error", Text),
            Column("consecutive_failures", Integer, server_default="0"),
            Column("job_config", JSON),
            *timestamps(),
        )

        create_table_if_not_exists(
            tx,
            "job_execution_logs",
            id_column(),
            Column("job_id", Integer, ForeignKey("system_jobs.id", ondelete="CASCADE")),
            Column("status", String(50), nullable=False),
            Column("result", Text),
            Column("error", Text),
            Column("duration_ms", Integer),
            _now("started_at"),
            Column("finished_at", DateTime(timezone=True)),
            Column("execution_context", JSON),
            Index("ix_job_execution_logs_job_started", "job_id", "started_at"),
        )

        create_table_if_not_exists(
            tx,
            "database_maintenance",
            id_column(),
            Column("operation", String(50), nullable=False),
            Column("table_name", String(255)),
            Column("duration_seconds", Numeric(8, 2)),
            Column("rows_affected", BigInteger),
            Column("success", Boolean, server_default=true()),
            Column("error", Text),
            _now("executed_at"),
            Index("ix_database_maintenance_operation_executed", "operation", "executed_at"),
        )

    def revert(self, db):
        with db.transaction() as tx:
            for table in JOB_TABLES + METRIC_TABLES:
                drop_table_if_exists(tx, table)
