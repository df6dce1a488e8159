"""Tests for the issue-request and acquisition tools."""

import pytest

from circulation_engine.database.schema import Book as BookDB
from circulation_engine.tools import bulk_approve_requests
from circulation_engine.tools.acquisitions import (
    approve_acquisition_request_handler,
    create_acquisition_request_handler,
    reject_acquisition_request_handler,
)
from circulation_engine.tools.requests import (
    approve_request_handler,
    bulk_approve_requests_handler,
    create_issue_request_handler,
    reject_request_handler,
)
from tests.conftest import add_book, add_member, reload


@pytest.fixture
def library(test_db_session):
    add_book(test_db_session, total_copies=1)
    add_member(test_db_session, "member_ben")
    add_member(test_db_session, "member_chen")


async def file_request(student_id: str, book_id: str = "book_algorithms") -> str:
    result = await create_issue_request_handler({"student_id": student_id, "book_id": book_id})
    assert "isError" not in result, result
    return result["data"]["request"]["id"]


class TestIssueRequestTools:
    async def test_create_and_approve(self, test_db_session, library):
        request_id = await file_request("member_ben")

        result = await approve_request_handler({"request_id": request_id, "processed_by": "librarian"})

        request = result["data"]["request"]
        assert request["status"] == "approved"
        assert request["borrow_record_id"] is not None
        assert reload(test_db_session, BookDB, "book_algorithms").available_copies == 0

    async def test_duplicate_pending_request(self, library):
        await file_request("member_ben")

        result = await create_issue_request_handler(
            {"student_id": "member_ben", "book_id": "book_algorithms"}
        )

        assert result["error"]["code"] == "Duplicate"

    async def test_approve_out_of_stock(self, library):
        first = await file_request("member_ben")
        second = await file_request("member_chen")
        await approve_request_handler({"request_id": first})

        result = await approve_request_handler({"request_id": second})

        assert result["error"]["code"] == "OutOfStock"

    async def test_reject_needs_reason(self, library):
        request_id = await file_request("member_ben")

        missing = await reject_request_handler({"request_id": request_id})
        assert missing["error"]["code"] == "ReasonRequired"

        result = await reject_request_handler({"request_id": request_id, "reason": "Reference only"})
        assert result["data"]["request"]["status"] == "rejected"
        assert result["data"]["request"]["rejection_reason"] == "Reference only"

    async def test_bulk_approval_reports_each_item(self, library):
        first = await file_request("member_ben")
        second = await file_request("member_chen")

        result = await bulk_approve_requests["handler"](
            {"request_ids": [first, second, first], "processed_by": "librarian"}
        )

        assert result["data"]["approved_count"] == 1
        assert result["data"]["succeeded"] == [first]
        assert result["data"]["failed_requests"] == [{"id": second, "reason": "OutOfStock"}]
        assert "Approved 1 of 2 requests" in result["content"][0]["text"]

    async def test_bulk_batch_size_is_capped(self, library):
        result = await bulk_approve_requests_handler(
            {"request_ids": [f"req_{n}" for n in range(101)]}
        )
        assert result["error"]["code"] == "InvalidArguments"


class TestAcquisitionTools:
    async def test_request_and_approve(self, test_db_session, library):
        created = await create_acquisition_request_handler(
            {"student_id": "member_chen", "book_name": "Sapiens", "author": "Harari"}
        )
        request_id = created["data"]["request"]["id"]

        result = await approve_acquisition_request_handler(
            {"request_id": request_id, "reviewed_by": "librarian", "mrp": "350.00"}
        )

        book_id = result["data"]["request"]["book_id"]
        book = reload(test_db_session, BookDB, book_id)
        assert book.title == "Sapiens"
        assert book.available_copies == 1

    async def test_existing_title_is_a_duplicate(self, library):
        result = await create_acquisition_request_handler(
            {
                "student_id": "member_chen",
                "book_name": "Introduction to Algorithms",
                "author": "Cormen",
                "publisher": "MIT Press",
            }
        )
        assert result["error"]["code"] == "Duplicate"

    async def test_missing_fields(self, library):
        result = await create_acquisition_request_handler({"student_id": "member_chen"})
        assert result["error"]["code"] == "InvalidArguments"

    async def test_reject_twice(self, library):
        created = await create_acquisition_request_handler(
            {"student_id": "member_chen", "book_name": "Sapiens", "author": "Harari"}
        )
        request_id = created["data"]["request"]["id"]

        first = await reject_acquisition_request_handler({"request_id": request_id, "reason": "Budget"})
        again = await reject_acquisition_request_handler({"request_id": request_id, "reason": "Budget"})

        assert first["data"]["request"]["status"] == "rejected"
        assert again["error"]["code"] == "AlreadyProcessed"
