import asyncio
import json

import pytest

from appointment_agent.models.booking import BookingDraft
from appointment_agent.models.chat import Role
from appointment_agent.services.session_store import (
    HISTORY_LIMIT,
    InMemorySessionStore,
    JsonFileSessionStore,
    build_session_store,
)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore()
    return JsonFileSessionStore(tmp_path)


@pytest.mark.asyncio
async def test_history_is_capped_at_the_most_recent_twenty(store):
    for index in range(22):
        role = Role.USER if index % 2 == 0 else Role.ASSISTANT
        await store.append_message("abc", role, f"message {index}")

    history = await store.get_history("abc")
    assert len(history) == HISTORY_LIMIT == 20
    assert history[0].content == "message 2"
    assert history[-1].content == "message 21"
    assert [message.content for message in await store.get_history("abc", limit=3)] == [
        "message 19",
        "message 20",
        "message 21",
    ]


@pytest.mark.asyncio
async def test_unknown_session_is_empty(store):
    assert await store.get_history("nobody") == []
    assert await store.get_draft("nobody") == BookingDraft()


@pytest.mark.asyncio
async def test_draft_save_and_clear(store):
    draft = BookingDraft(name="Ada", service="SEO")
    await store.save_draft("abc", draft)
    assert await store.get_draft("abc") == draft

    await store.clear_draft("abc")
    assert (await store.get_draft("abc")).is_empty()


@pytest.mark.asyncio
async def test_clear_session_removes_history_and_draft(store):
    await store.append_message("abc", Role.USER, "hi")
    await store.save_draft("abc", BookingDraft(name="Ada"))

    await store.clear_session("abc")

    assert await store.get_history("abc") == []
    assert await store.get_draft("abc") == BookingDraft()
    await store.clear_session("abc")


@pytest.mark.asyncio
async def test_list_sessions_most_recent_first(store):
    await store.append_message("older", Role.USER, "one", user_id="u-1")
    await asyncio.sleep(0.01)
    await store.append_message("newer", Role.USER, "two")
    await store.append_message("newer", Role.ASSISTANT, "three")

    summaries = await store.list_sessions()

    assert [summary.session_id for summary in summaries] == ["newer", "older"]
    assert summaries[0].message_count == 2
    assert summaries[1].user_id == "u-1"


@pytest.mark.asyncio
async def test_file_store_survives_a_restart(tmp_path):
    first = JsonFileSessionStore(tmp_path)
    await first.append_message("persist-me", Role.USER, "Hello")
    await first.save_draft("persist-me", BookingDraft(email="ada@example.com"))

    second = JsonFileSessionStore(tmp_path)
    history = await second.get_history("persist-me")
    assert [(message.role, message.content) for message in history] == [(Role.USER, "Hello")]
    assert (await second.get_draft("persist-me")).email == "ada@example.com"

    document = json.loads(first._path("persist-me").read_text())
    assert document["sessionId"] == "persist-me"
    assert document["draft"] == {"email": "ada@example.com"}


@pytest.mark.asyncio
async def test_file_store_keeps_similar_ids_apart(tmp_path):
    store = JsonFileSessionStore(tmp_path)
    await store.append_message("user.a", Role.USER, "my email is alice@example.com")
    await store.save_draft("user.a", BookingDraft(name="Alice", email="alice@example.com"))

    assert store._path("user.a") != store._path("usera")
    assert await store.get_history("usera") == []
    assert await store.get_draft("usera") == BookingDraft()

    await store.save_draft("usera", BookingDraft(name="Bob"))
    assert (await store.get_draft("user.a")).name == "Alice"
    assert sorted(summary.session_id for summary in await store.list_sessions()) == ["user.a", "usera"]


def test_file_store_paths_stay_inside_the_directory(tmp_path):
    store = JsonFileSessionStore(tmp_path)
    assert store._path("../../etc/passwd").parent == tmp_path
    with pytest.raises(ValueError):
        store._path("")


def test_history_limit_must_be_positive():
    with pytest.raises(ValueError):
        InMemorySessionStore(history_limit=0)


@pytest.mark.asyncio
async def test_lock_is_per_session():
    store = InMemorySessionStore()
    assert store.lock("a") is store.lock("a")
    assert store.lock("a") is not store.lock("b")

    order = []

    async def turn(session_id, label, delay):
        async with store.lock(session_id):
            order.append(f"{label}-start")
            await asyncio.sleep(delay)
            order.append(f"{label}-end")

    await asyncio.gather(turn("a", "first", 0.02), turn("a", "second", 0), turn("b", "other", 0))

    # Same session turns never interleave; another session runs meanwhile
    assert order.index("first-end") < order.index("second-start")
    assert order.index("other-end") < order.index("first-end")


def test_build_session_store_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SESSION_STORE", "file")
    monkeypatch.setenv("SESSION_DIR", str(tmp_path))
    assert isinstance(build_session_store(), JsonFileSessionStore)

    monkeypatch.setenv("SESSION_STORE", "memory")
    assert isinstance(build_session_store(), InMemorySessionStore)

    monkeypatch.setenv("SESSION_STORE", "redis")
    with pytest.raises(ValueError):
        build_session_store()
