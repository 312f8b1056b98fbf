"""Tests for database session management and utilities."""

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from case_portal.database import get_db, get_session_maker, init_db, set_test_session_maker


@pytest.mark.asyncio
async def test_get_db_yields_session_from_test_maker(session_maker):
    """
    GIVEN a test session maker installed by the fixture
    WHEN calling get_db
    THEN it should yield a working AsyncSession bound to the test engine
    """
    assert get_session_maker() is session_maker
    generator = get_db()
    session = await generator.__anext__()
    try:
        assert isinstance(session, AsyncSession)
        assert (await session.execute(text("SELECT 1"))).scalar_one() == 1
    finally:
        await generator.aclose()


def test_set_test_session_maker_returns_previous():
    """
    GIVEN an installed override
    WHEN replacing it
    THEN the previous maker is returned so it can be restored
    """
    sentinel = object()
    original = set_test_session_maker(sentinel)  # type: ignore[arg-type]
    try:
        assert get_session_maker() is sentinel
    finally:
        assert set_test_session_maker(original) is sentinel


@pytest.mark.asyncio
async def test_init_db_is_a_no_op():
    """Schema is owned by migrations; init_db only logs."""
    await init_db()
