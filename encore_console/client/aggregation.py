"""Read-side projections over synchronized job and queue data."""
from typing import Iterable, List, Optional

from encore_console.models.job import EncoreJob, JobStatus, PagedJobs, QueueItem
from encore_console.models.responses import StatusCounts


_COUNT_FIELDS = {
    JobStatus.NEW: "new",
    JobStatus.QUEUED: "queued",
    JobStatus.IN_PROGRESS: "in_progress",
    JobStatus.SUCCESSFUL: "successful",
    JobStatus.FAILED: "failed",
    JobStatus.CANCELLED: "cancelled",
}


def count_statuses(page: Optional[PagedJobs]) -> StatusCounts:
    """
    Count jobs per status.

    The total comes from the backend's page metadata. Only the jobs on the
    given page are counted, so per-status counts add up to the total only when
    the page holds the complete list.
    """
    if page is None:
        return StatusCounts()

    counts = StatusCounts(total=page.page.total_elements)
    if page.page.total_elements == 0:
        return counts

    for job in page.jobs:
        field = _COUNT_FIELDS[job.status]
        setattr(counts, field, getattr(counts, field) + 1)
    return counts


def sort_queue(items: Iterable[QueueItem]) -> List[QueueItem]:
    """Display order: highest priority first, then oldest first."""
    return sorted(items, key=lambda item: (-item.priority, item.created))


def filter_jobs(jobs: Iterable[EncoreJob], term: str) -> List[EncoreJob]:
    """Case-insensitive search on base name, id and external id."""
    if not term:
        return list(jobs)
    needle = term.lower()
    return [
        job for job in jobs
        if needle in job.base_name.lower()
        or needle in job.id.lower()
        or (job.external_id and needle in job.external_id.lower())
    ]
