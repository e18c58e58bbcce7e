import pytest

from soundsteps.errors import InvalidTransitionError
from soundsteps.models.session import Channel, SessionStatus

from tests.conftest import LEARNER_PHONE
from tests.test_session_model import make_session

pytestmark = pytest.mark.asyncio


async def test_create_and_lookup(store):
    session = await store.create(make_session())
    assert await store.get_by_id(session.id) == session
    assert await store.get_by_channel_id(Channel.SMS, LEARNER_PHONE) == session
    assert await store.get_by_channel_id(Channel.VOICE, LEARNER_PHONE) is None


async def test_in_flight_records_expire(store, redis_client, settings):
    session = await store.create(make_session())
    ttl = await redis_client.ttl(f"soundsteps:session:{session.id}")
    assert 0 < ttl <= settings.session_timeout


async def test_update_partial_fields(store):
    session = await store.create(make_session())
    updated = await store.update(session.id, question_index=1, caregiver_phone="+254700000000")
    assert updated.question_index == 1
    assert (await store.get_by_id(session.id)).caregiver_phone == "+254700000000"


async def test_update_unknown_session(store):
    assert await store.update("session_missing", score=1) is None


async def test_status_never_moves_backward(store):
    session = await store.create(make_session())
    session.finish(SessionStatus.COMPLETED)
    await store.save(session)

    with pytest.raises(InvalidTransitionError):
        await store.update(session.id, status=SessionStatus.IN_PROGRESS, ended_at=None)
    with pytest.raises(InvalidTransitionError):
        await store.update(session.id, status=SessionStatus.FAILED)
    assert (await store.get_by_id(session.id)).status == SessionStatus.COMPLETED


async def test_finalize_keeps_record_and_leaves_active_set(store, redis_client):
    session = await store.create(make_session())
    session.finish(SessionStatus.COMPLETED)
    await store.finalize(session)

    assert await store.get_by_channel_id(Channel.SMS, LEARNER_PHONE) is None
    assert (await store.get_by_id(session.id)).status == SessionStatus.COMPLETED
    assert await redis_client.ttl(f"soundsteps:session:{session.id}") == -1


async def test_finalized_session_still_found_by_channel_id(store):
    session = await store.create(make_session(channel=Channel.VOICE, channel_id="ATVId_1"))
    session.finish(SessionStatus.ABANDONED)
    await store.finalize(session)

    assert await store.get_by_channel_id(Channel.VOICE, "ATVId_1") is None
    latest = await store.latest_for_channel_id(Channel.VOICE, "ATVId_1")
    assert latest.id == session.id
    assert latest.status == SessionStatus.ABANDONED
    assert await store.latest_for_channel_id(Channel.VOICE, "ATVId_2") is None


async def test_finalize_requires_terminal_session(store):
    session = await store.create(make_session())
    with pytest.raises(InvalidTransitionError):
        await store.finalize(session)


async def test_release_ignores_replaced_session(store):
    old = await store.create(make_session())
    new = await store.create(make_session())
    await store.release(old)
    assert (await store.get_by_channel_id(Channel.SMS, LEARNER_PHONE)).id == new.id


async def test_reporting(store):
    first = await store.create(make_session())
    first.record_answer("B", True)
    first.finish(SessionStatus.COMPLETED)
    await store.finalize(first)
    second = await store.create(make_session(channel=Channel.VOICE, channel_id="ATVId_1"))

    recent = await store.list_recent(10)
    assert {s.id for s in recent} == {first.id, second.id}
    assert (await store.latest_for_phone(LEARNER_PHONE, Channel.SMS)).id == first.id

    stats = await store.stats()
    assert stats["totalSessions"] == 2
    assert stats["completed"] == 1
    assert stats["inProgress"] == 1
    assert stats["averageScore"] == 0.5
