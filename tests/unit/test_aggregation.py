"""Test status counts, queue ordering and job search."""

import pytest

from encore_console.client.aggregation import count_statuses, filter_jobs, sort_queue
from encore_console.models.job import EncoreJob, PagedJobs, QueueItem
from conftest import make_job, make_page


@pytest.fixture
def full_page():
    """Ten jobs: five successful, two failed, three in progress."""
    statuses = ["SUCCESSFUL"] * 5 + ["FAILED"] * 2 + ["IN_PROGRESS"] * 3
    jobs = [make_job(f"job-{i}", status=status) for i, status in enumerate(statuses)]
    return PagedJobs.model_validate(make_page(jobs, size=20))


class TestCountStatuses:
    """Test status aggregation."""

    def test_complete_list(self, full_page):
        """Counts add up to the reported total."""
        counts = count_statuses(full_page)

        assert counts.model_dump(by_alias=True) == {
            "total": 10,
            "new": 0,
            "queued": 0,
            "inProgress": 3,
            "successful": 5,
            "failed": 2,
            "cancelled": 0,
        }
        assert counts.counted == counts.total

    def test_empty_page(self):
        counts = count_statuses(PagedJobs.model_validate(make_page([])))
        assert counts.total == 0
        assert counts.counted == 0

    def test_no_data(self):
        assert count_statuses(None).total == 0

    def test_partial_page(self):
        """Total comes from page metadata, not the page contents."""
        page = PagedJobs.model_validate(make_page([make_job(status="QUEUED")], total=42))

        counts = count_statuses(page)

        assert counts.total == 42
        assert counts.queued == 1
        assert counts.counted == 1


class TestSortQueue:
    """Test queue display order."""

    def test_priority_then_age(self):
        items = [
            QueueItem(id="p10-t1", priority=10, created="2024-01-01T10:01:00Z"),
            QueueItem(id="p20-t2", priority=20, created="2024-01-01T10:02:00Z"),
            QueueItem(id="p20-t0", priority=20, created="2024-01-01T10:00:00Z"),
        ]

        assert [item.id for item in sort_queue(items)] == ["p20-t0", "p20-t2", "p10-t1"]

    def test_input_untouched(self):
        items = [
            QueueItem(id="low", priority=1, created="2024-01-01T10:00:00Z"),
            QueueItem(id="high", priority=9, created="2024-01-01T10:00:00Z"),
        ]
        sort_queue(items)
        assert items[0].id == "low"


class TestFilterJobs:
    """Test job search."""

    @pytest.fixture
    def jobs(self):
        return [
            EncoreJob.model_validate(make_job("a1", baseName="Evening_News")),
            EncoreJob.model_validate(make_job("b2", baseName="sports", externalId="EXT-77")),
            EncoreJob.model_validate(make_job("c3", baseName="weather")),
        ]

    def test_by_base_name(self, jobs):
        assert [j.id for j in filter_jobs(jobs, "news")] == ["a1"]

    def test_by_external_id(self, jobs):
        assert [j.id for j in filter_jobs(jobs, "ext-77")] == ["b2"]

    def test_by_id(self, jobs):
        assert [j.id for j in filter_jobs(jobs, "C3")] == ["c3"]

    def test_empty_term(self, jobs):
        assert len(filter_jobs(jobs, "")) == 3
