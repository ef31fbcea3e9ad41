import uuid
from datetime import datetime

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from edumanage.db import Base
from edumanage.services.sql_store import SQLAlchemyDataStore
from edumanage.services.store import StoreError


@pytest.fixture
async def sql_store(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SQLAlchemyDataStore(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


async def add_exam(store, title="Physics quiz"):
    return await store.create("online_exams", {
        'title': title,
        'start_time': datetime(2026, 5, 1, 9, 0),
        'end_time': datetime(2026, 5, 1, 11, 0),
        'duration_minutes': 30,
    })


async def test_create_returns_string_ids_and_reads_them_back(sql_store):
    exam_id = await add_exam(sql_store)
    student_id = str(uuid.uuid4())
    attempt_id = await sql_store.create("online_exam_attempts", {
        'online_exam_id': exam_id,
        'student_id': student_id,
        'status': "in_progress",
    })

    assert isinstance(attempt_id, str)
    rows = await sql_store.read("online_exam_attempts", {'online_exam_id': exam_id, 'student_id': student_id})
    assert len(rows) == 1
    assert rows[0]['id'] == attempt_id
    assert rows[0]['online_exam_id'] == exam_id
    assert rows[0]['student_id'] == student_id


async def test_sequence_filters_select_any_of(sql_store):
    first = await add_exam(sql_store, "First")
    second = await add_exam(sql_store, "Second")
    await add_exam(sql_store, "Third")

    rows = await sql_store.read("online_exams", {'id': [first, second]}, order_by="title")
    assert [r['title'] for r in rows] == ["First", "Second"]


async def test_update_patches_and_reports_missing_rows(sql_store):
    exam_id = await add_exam(sql_store)
    await sql_store.update("online_exams", exam_id, {'tab_switch_limit': 2})
    assert (await sql_store.read("online_exams", {'id': exam_id}))[0]['tab_switch_limit'] == 2

    with pytest.raises(StoreError, match="not found"):
        await sql_store.update("online_exams", str(uuid.uuid4()), {'tab_switch_limit': 1})


async def test_malformed_ids_match_nothing(sql_store):
    await add_exam(sql_store)

    assert await sql_store.read("online_exams", {'id': "abc"}) == []
    assert await sql_store.read("online_exam_attempts", {'online_exam_id': "not-a-uuid"}) == []
    with pytest.raises(StoreError):
        await sql_store.update("online_exams", "abc", {'title': "x"})


async def test_unknown_table(sql_store):
    with pytest.raises(StoreError, match="Unknown table"):
        await sql_store.read("exam_sessions")
