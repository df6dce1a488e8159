"""
Create the ledger schema and load a small demo library.

Usage:
    circulation-init-db [--drop-existing] [--sample-data] [--database-url URL]
"""

import argparse
import logging
import sys
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import inspect

from .database.book_repository import BookCreateSchema, BookRepository
from .database.circulation_repository import CirculationRepository
from .database.member_repository import MemberCreateSchema, MemberRepository
from .database.penalty_repository import PenaltyRepository
from .database.request_repository import IssueRequestRepository
from .database.session import DatabaseManager, get_db_manager
from .database.waitlist_repository import WaitlistRepository
from .models.member import MembershipType, MemberStatus

logger = logging.getLogger(__name__)

SAMPLE_BOOKS = [
    BookCreateSchema(
        id="book_algorithms",
        title="Introduction to Algorithms",
        author="Cormen",
        publisher="MIT Press",
        edition="4th",
        genre="Computer Science",
        mrp=Decimal("500.00"),
        total_copies=2,
    ),
    BookCreateSchema(
        id="book_sapiens",
        title="Sapiens",
        author="Yuval Noah Harari",
        publisher="Harper",
        genre="History",
        mrp=Decimal("350.00"),
        total_copies=1,
    ),
    BookCreateSchema(
        id="book_zine",
        title="Campus Poetry Zine",
        author="Student Union",
        genre="Poetry",
        mrp=None,
        total_copies=3,
    ),
]

SAMPLE_MEMBERS = [
    MemberCreateSchema(
        id="member_asha",
        name="Asha Rao",
        email="asha@example.edu",
        status=MemberStatus.APPROVED,
        membership_type=MembershipType.PREMIUM,
    ),
    MemberCreateSchema(
        id="member_ben",
        name="Ben Okafor",
        email="ben@example.edu",
        status=MemberStatus.APPROVED,
    ),
    MemberCreateSchema(
        id="member_chen",
        name="Chen Li",
        email="chen@example.edu",
        status=MemberStatus.APPROVED,
    ),
    MemberCreateSchema(
        id="member_dara",
        name="Dara Quinn",
        email="dara@example.edu",
        status=MemberStatus.PENDING,
    ),
]


def load_sample_data(db_manager: DatabaseManager) -> None:
    """Load a catalog, members, an overdue loan, pending requests and a waitlist."""
    with db_manager.session_scope() as session:
        books = BookRepository(session)
        for book in SAMPLE_BOOKS:
            books.create(book)
        members = MemberRepository(session)
        for member in SAMPLE_MEMBERS:
            members.create(member)
        logger.info("Created %d books and %d members", len(SAMPLE_BOOKS), len(SAMPLE_MEMBERS))

    with db_manager.session_scope() as session:
        circulation = CirculationRepository(session)
        today = circulation.clock.today()

        # Ben's copy of Sapiens is three days late; Asha and Chen queue for it.
        overdue = circulation.issue("book_sapiens", "member_ben", today - timedelta(days=3))
        PenaltyRepository(session).compute_penalty(overdue.id)

        waitlist = WaitlistRepository(session)
        waitlist.join("book_sapiens", "member_chen")
        waitlist.join("book_sapiens", "member_asha")

        requests = IssueRequestRepository(session)
        requests.create_request("member_chen", "book_algorithms")
        requests.create_request("member_asha", "book_algorithms")
        requests.create_request("member_ben", "book_zine")
        logger.info("Created 1 overdue loan, 2 waitlist entries and 3 pending requests")


def main():
    """Main entry point for database initialization."""
    parser = argparse.ArgumentParser(description="Initialize the Circulation Engine ledger")
    parser.add_argument(
        "--drop-existing",
        action="store_true",
        help="Drop existing tables before creating new ones",
    )
    parser.add_argument(
        "--sample-data",
        action="store_true",
        help="Load sample data after creating tables",
    )
    parser.add_argument(
        "--database-url",
        help="Override default database URL",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    db_manager = get_db_manager(args.database_url)
    if not db_manager.verify_connection():
        logger.error("Failed to connect to database")
        sys.exit(1)

    logger.info("Creating database schema...")
    db_manager.init_database(drop_existing=args.drop_existing)

    if args.sample_data:
        logger.info("Loading sample data...")
        load_sample_data(db_manager)

    tables = inspect(db_manager.engine).get_table_names()
    logger.info("Ledger ready with tables: %s", ", ".join(sorted(tables)))
    db_manager.close()


if __name__ == "__main__":
    main()
