"""
Seed 003: System Defaults

Default moderation thresholds and scheduled maintenance jobs. Existing
rows are left alone so values tuned by administrators survive reseeding.
"""

import json
import logging

from eoty_db.database.schema_ops import insert_if_missing
from eoty_db.seeding.base import Seed

logger = logging.getLogger(__name__)

MODERATION_SETTINGS = {
    "faithAlignmentThreshold": 0.6,
    "sensitiveTopicCount": 2,
    "autoModerateConfidence": 0.8,
    "highSeverityAutoEscalate": True,
    "moderationEnabled": True,
    "faithValidationEnabled": True,
}

SYSTEM_JOBS = [
    {
        "job_name": "cleanup_old_metrics",
        "job_type": "cleanup",
        "schedule": "0 2 * * *",
        "job_config": {
            "retention_days": 30,
            "tables": ["performance_metrics", "system_monitoring", "analytics_events"],
        },
    },
    {
        "job_name": "database_backup",
        "job_type": "backup",
        "schedule": "0 0 * * 0",
        "job_config": {"backup_type": "full", "compression": True, "retention_count": 4},
    },
    {
        "job_name": "user_engagement_report",
        "job_type": "report",
        "schedule": "0 6 * * 1",
        "job_config": {"report_type": "weekly_engagement", "recipients": ["admin@eoty.org"]},
    },
    {
        "job_name": "video_processing_cleanup",
        "job_type": "cleanup",
        "schedule": "0 3 * * *",
        "job_config": {"max_processing_hours": 24, "cleanup_failed": True},
    },
]


class SystemDefaults(Seed):
    description = "Default moderation settings and scheduled system jobs"

    def run(self, db, settings):
        added = 0
        for key, value in MODERATION_SETTINGS.items():
            added += insert_if_missing(
                db, "moderation_settings", {"setting_key": key}, {"setting_value": json.dumps(value)}
            )

        has_config = db.has_column("system_jobs", "job_config")
        for job in SYSTEM_JOBS:
            values = {"job_type": job["job_type"], "schedule": job["schedule"], "is_active": True}
            if has_config:
                values["job_config"] = json.dumps(job["job_config"])
            added += insert_if_missing(db, "system_jobs", {"job_name": job["job_name"]}, values)

        if added:
            logger.info(f"Inserted {added} default setting/job row(s)")
