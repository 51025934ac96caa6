"""
Unit tests for the job store and its sqlite schema.
"""
from datetime import date

import pytest

from core.exceptions import DataNotFoundError, PersistenceError
from core.job_store import DEFAULT_DESCRIPTION
from core.schema import ApportionMode, JobStatus, ResolvedLineItem


def resolved(category_id, amount, mode=ApportionMode.ALONE, shared_with=None, takes_all=False, description=""):
    return ResolvedLineItem(
        amount=amount,
        description=description,
        category_id=category_id,
        apportion_mode=mode,
        shared_with=shared_with,
        takes_all=takes_all,
    )


def count_rows(database, table):
    conn = database.get_connection()
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()


def test_categories_seeded(database):
    """Test the default catalog is seeded once."""
    database.init_db()
    names = [c.name for c in database.list_categories()]
    assert "Groceries" in names
    assert "Transport" in names
    assert len(names) == len(set(names))


def test_resolve_category_ids(database):
    ids = database.resolve_category_ids(["Groceries", "Snacks", "Groceries"])
    assert set(ids) == {"Groceries"}


def test_partner_lookup(database, buyer, partner, single):
    assert database.get_partner_id(buyer) == partner
    assert database.get_partner_id(partner) == buyer
    assert database.get_partner_id(single) is None
    assert database.get_user_name(buyer) == "Demo"
    assert database.get_user_name(9999) is None


def test_create_job(job_store, buyer, partner):
    """Test a new job is pending and unfinished."""
    job_id = job_store.create_job(buyer, partner, "groceries", 75.0, False, date(2024, 5, 21))
    job = job_store.get_job(job_id)

    assert job.status is JobStatus.PENDING
    assert not job.is_finished
    assert job.buyer_id == buyer
    assert job.partner_id == partner
    assert job.transaction_date == date(2024, 5, 21)
    assert job.error_message is None


def test_get_missing_job(job_store):
    with pytest.raises(DataNotFoundError):
        job_store.get_job(12345)


def test_claim_job_once(job_store, buyer):
    """Test only one claim of a pending job succeeds."""
    job_id = job_store.create_job(buyer, None, "bus", 25.0, False)

    claimed = job_store.claim_job(job_id)
    assert claimed is not None
    assert claimed.status is JobStatus.PROCESSING
    assert job_store.claim_job(job_id) is None


def test_complete_job(database, job_store, buyer, partner):
    """Test spendings and completion are written together."""
    job_id = job_store.create_job(buyer, partner, "groceries and bus", 75.0, False)
    job = job_store.claim_job(job_id)
    groceries = database.resolve_category_ids(["Groceries"])["Groceries"]
    transport = database.resolve_category_ids(["Transport"])["Transport"]

    spending_ids = job_store.complete_job(
        job,
        [
            resolved(groceries, 50.0, ApportionMode.SHARED, shared_with=partner, description="Groceries"),
            resolved(transport, 25.0),
        ],
        ambiguity_reason=None,
    )

    assert len(spending_ids) == 2
    done = job_store.get_job(job_id)
    assert done.status is JobStatus.COMPLETED
    assert done.is_finished
    assert not done.is_ambiguity_flagged

    spendings = job_store.list_job_spendings(job_id)
    assert [s.category for s in spendings] == ["Groceries", "Transport"]
    assert spendings[0].shared_with == partner
    assert spendings[1].shared_with is None
    assert spendings[1].description == DEFAULT_DESCRIPTION
    assert all(s.settled_at is None for s in spendings)
    assert spendings[0].spending_date == job.created_at[:10]


def test_complete_job_pre_settled_and_dated(database, job_store, buyer, partner):
    """Test pre-settled jobs settle their spendings and use the transaction date."""
    job_id = job_store.create_job(buyer, partner, "bread for partner", 40.0, True, date(2024, 1, 2))
    job = job_store.claim_job(job_id)
    groceries = database.resolve_category_ids(["Groceries"])["Groceries"]

    job_store.complete_job(
        job,
        [resolved(groceries, 40.0, ApportionMode.OWED_BY_PARTNER, shared_with=partner, takes_all=True)],
        ambiguity_reason="Unclear which bread",
    )

    spending = job_store.list_job_spendings(job_id)[0]
    assert spending.settled_at is not None
    assert spending.takes_all
    assert spending.spending_date == "2024-01-02"
    done = job_store.get_job(job_id)
    assert done.is_ambiguity_flagged
    assert done.ambiguity_flag_reason == "Unclear which bread"


def test_complete_job_rolls_back(database, job_store, buyer):
    """Test a failed write leaves no spendings and the job processing."""
    job_id = job_store.create_job(buyer, None, "groceries and mystery", 75.0, False)
    job = job_store.claim_job(job_id)
    groceries = database.resolve_category_ids(["Groceries"])["Groceries"]

    with pytest.raises(PersistenceError):
        job_store.complete_job(job, [resolved(groceries, 50.0), resolved(99999, 25.0)], ambiguity_reason=None)

    assert count_rows(database, "spendings") == 0
    assert count_rows(database, "user_spendings") == 0
    assert count_rows(database, "ai_categorized_spendings") == 0
    assert job_store.get_job(job_id).status is JobStatus.PROCESSING


def test_complete_job_requires_processing(database, job_store, buyer):
    """Test a job that is no longer processing is not completed."""
    job_id = job_store.create_job(buyer, None, "bus", 25.0, False)
    job = job_store.claim_job(job_id)
    job_store.mark_failed(job_id, "Processing was interrupted before completion")
    transport = database.resolve_category_ids(["Transport"])["Transport"]

    with pytest.raises(PersistenceError):
        job_store.complete_job(job, [resolved(transport, 25.0)], ambiguity_reason=None)

    assert count_rows(database, "spendings") == 0
    assert job_store.get_job(job_id).status is JobStatus.FAILED


def test_mark_failed(job_store, buyer):
    """Test failing records the message and is idempotent on terminal jobs."""
    job_id = job_store.create_job(buyer, None, "bus", 25.0, False)
    job_store.mark_failed(job_id, "Unknown category: Snacks")
    job_store.mark_failed(job_id, "Something else")

    job = job_store.get_job(job_id)
    assert job.status is JobStatus.FAILED
    assert job.is_finished
    assert job.error_message == "Unknown category: Snacks"


def test_list_pending_job_ids(job_store, buyer):
    first = job_store.create_job(buyer, None, "one", 1.0, False)
    second = job_store.create_job(buyer, None, "two", 2.0, False)
    job_store.claim_job(first)

    assert job_store.list_pending_job_ids() == [second]
    assert job_store.list_pending_job_ids(older_than_seconds=3600) == []


def test_fail_interrupted_jobs(job_store, buyer):
    """Test only processing jobs are failed."""
    stuck = job_store.create_job(buyer, None, "one", 1.0, False)
    waiting = job_store.create_job(buyer, None, "two", 2.0, False)
    job_store.claim_job(stuck)

    assert job_store.fail_interrupted_jobs("interrupted") == 1
    assert job_store.get_job(stuck).status is JobStatus.FAILED
    assert job_store.get_job(stuck).error_message == "interrupted"
    assert job_store.get_job(waiting).status is JobStatus.PENDING


def test_deleting_job_deletes_spendings(database, job_store, buyer):
    """Test removing a job removes the spendings it produced."""
    job_id = job_store.create_job(buyer, None, "bus", 25.0, False)
    job = job_store.claim_job(job_id)
    transport = database.resolve_category_ids(["Transport"])["Transport"]
    job_store.complete_job(job, [resolved(transport, 25.0)], ambiguity_reason=None)
    assert count_rows(database, "spendings") == 1

    conn = database.get_connection()
    try:
        conn.execute("DELETE FROM ai_categorization_jobs WHERE id = ?", (job_id,))
        conn.commit()
    finally:
        conn.close()

    assert count_rows(database, "spendings") == 0
    assert count_rows(database, "user_spendings") == 0
    assert count_rows(database, "ai_categorized_spendings") == 0
