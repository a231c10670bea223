"""Tracks operator chart upgrade jobs and records their completion on the upgrade."""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Optional

from .resources import Job, Upgrade, UpgradeJobStatus
from .upgrade_common import (
    OPERATOR_UPGRADE_CHARTS,
    SYSTEM_NAMESPACE,
    CommonHandler,
    upgrade_job_is_complete_after,
)

logger = logging.getLogger(__name__)

HELM_CHART_LABEL_KEY = "helmcharts.helm.cattle.io/chart"


def add_job_status_to_upgrade(upgrade: Upgrade, job_name: str, chart_name: str,
                              complete_time: Optional[datetime]) -> None:
    """Mark the job complete on ``upgrade``, replacing an entry for the same job or chart."""
    job_status = UpgradeJobStatus(
        name=job_name,
        helm_chart_name=chart_name,
        complete=True,
        last_update_time=complete_time,
    )
    jobs = upgrade.status.upgrade_jobs
    for index, existing in enumerate(jobs):
        if existing.name == job_name or existing.helm_chart_name == chart_name:
            jobs[index] = job_status
            return
    logger.debug("job %s not found in upgrade %s status, adding it", job_name, upgrade.name)
    jobs.append(job_status)


class JobHandler(CommonHandler):
    """Updates the latest upgrade when an operator chart job completes."""

    def watch_upgrade_jobs(self, key: str, job: Optional[Job]) -> Optional[Job]:
        if (job is None or job.deletion_timestamp is not None or not job.labels
                or job.namespace != SYSTEM_NAMESPACE):
            return None

        chart_name = job.labels.get(HELM_CHART_LABEL_KEY, "")
        if chart_name not in OPERATOR_UPGRADE_CHARTS:
            return None

        upgrade = self.latest_upgrade("")
        if upgrade is None:
            logger.debug("no latest upgrade found, skip syncing job status")
            return job

        if upgrade_job_is_complete_after(upgrade, job):
            self.sync_upgrade_job_status(upgrade, job, chart_name)
        return job

    def sync_upgrade_job_status(self, upgrade: Upgrade, job: Job, chart_name: str) -> Upgrade:
        logger.debug("job %s is complete after upgrade %s, updating upgrade status",
                     job.name, upgrade.name)
        to_update = copy.deepcopy(upgrade)
        add_job_status_to_upgrade(to_update, job.name, chart_name, job.completion_time)
        return self.upgrades.update_status(to_update)