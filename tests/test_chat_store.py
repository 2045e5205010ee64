from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from codex_vault.shared.models.chat import ContextScope, Message, MessageRole, Usage
from codex_vault.shared.models.settings import Settings
from codex_vault.shared.services import chat_store as chat_store_module
from codex_vault.shared.services.chat_store import ChatStore


def _msg(text: str, role: MessageRole = MessageRole.USER) -> Message:
    return Message(role=role, text=text)


async def _loaded(tmp_path: Path, **kwargs) -> ChatStore:
    store = ChatStore(tmp_path, **kwargs)
    await store.load("My Vault")
    return store


def _record_writes(monkeypatch: pytest.MonkeyPatch) -> list[Path]:
    writes: list[Path] = []
    real = chat_store_module.atomic_write_json

    def recorder(path: Path, payload) -> None:
        writes.append(path)
        real(path, payload)

    monkeypatch.setattr(chat_store_module, "atomic_write_json", recorder)
    return writes


@pytest.mark.asyncio
async def test_first_load_creates_single_default_chat(tmp_path: Path) -> None:
    store = await _loaded(tmp_path)

    chats = store.get_chats()
    assert len(chats) == 1
    assert chats[0].title == "Chat 1"
    assert store.active_chat_id == chats[0].id
    assert store.get_messages() == []
    assert store.vault_name == "My Vault"

    index = json.loads((tmp_path / "data.json").read_text(encoding="utf-8"))
    assert index["activeChatId"] == chats[0].id
    assert [c["id"] for c in index["chats"]] == [chats[0].id]
    chat_file = json.loads(store.chat_file_path(chats[0].id).read_text(encoding="utf-8"))
    assert chat_file["messages"] == []


@pytest.mark.asyncio
async def test_corrupt_index_falls_back_to_defaults(tmp_path: Path) -> None:
    (tmp_path / "data.json").write_text("{not json", encoding="utf-8")

    store = await _loaded(tmp_path)

    assert len(store.get_chats()) == 1
    assert store.get_settings() == Settings()


@pytest.mark.asyncio
async def test_stale_active_id_falls_back_to_first_chat(tmp_path: Path) -> None:
    (tmp_path / "data.json").write_text(json.dumps({
        "activeChatId": "chat-gone",
        "chats": [
            {"id": "chat-a", "title": "A"},
            {"id": "chat-b", "title": "B"},
        ],
    }), encoding="utf-8")

    store = await _loaded(tmp_path)

    assert store.active_chat_id == "chat-a"
    assert store.get_active_chat().title == "A"
    assert store.chat_file_path("chat-a").exists()


@pytest.mark.asyncio
async def test_get_active_chat_requires_load(tmp_path: Path) -> None:
    store = ChatStore(tmp_path)
    with pytest.raises(RuntimeError):
        store.get_active_chat()


@pytest.mark.asyncio
async def test_set_messages_keeps_most_recent(tmp_path: Path) -> None:
    store = await _loaded(tmp_path, max_messages=5)
    messages = [_msg(f"m{i}") for i in range(12)]

    store.set_messages(messages)

    assert store.get_messages() == messages[-5:]


@pytest.mark.asyncio
async def test_appending_160_messages_keeps_last_150(tmp_path: Path) -> None:
    store = await _loaded(tmp_path, max_messages=150)
    originals = [_msg(f"message {i}") for i in range(160)]

    for message in originals:
        store.append_message(message)
    await store.save()

    assert store.get_messages() == originals[10:]

    reloaded = await _loaded(tmp_path, max_messages=150)
    texts = [m.text for m in reloaded.get_messages()]
    assert len(texts) == 150
    assert texts == [f"message {i}" for i in range(10, 160)]


@pytest.mark.asyncio
async def test_switch_to_active_chat_is_noop(tmp_path: Path, monkeypatch) -> None:
    store = await _loaded(tmp_path)
    store.append_message(_msg("hello"))
    writes = _record_writes(monkeypatch)

    result = await store.switch_chat(store.active_chat_id)

    assert result is not None
    chat, messages = result
    assert chat == store.get_active_chat()
    assert [m.text for m in messages] == ["hello"]
    assert writes == []


@pytest.mark.asyncio
async def test_switch_to_unknown_chat_changes_nothing(tmp_path: Path, monkeypatch) -> None:
    store = await _loaded(tmp_path)
    store.append_message(_msg("unsaved"))
    active = store.active_chat_id
    before = {p: p.read_bytes() for p in tmp_path.rglob("*.json")}
    writes = _record_writes(monkeypatch)

    assert await store.switch_chat("chat-missing") is None

    assert store.active_chat_id == active
    assert [m.text for m in store.get_messages()] == ["unsaved"]
    assert writes == []
    assert {p: p.read_bytes() for p in tmp_path.rglob("*.json")} == before


@pytest.mark.asyncio
async def test_switch_flushes_outgoing_chat(tmp_path: Path) -> None:
    store = await _loaded(tmp_path)
    first_id = store.active_chat_id
    store.append_message(_msg("first chat"))
    await store.save()

    second, _ = await store.create_chat()
    store.append_message(_msg("second chat"))

    result = await store.switch_chat(first_id)

    assert result is not None
    chat, messages = result
    assert chat.id == first_id
    assert [m.text for m in messages] == ["first chat"]

    second_file = json.loads(store.chat_file_path(second.id).read_text(encoding="utf-8"))
    assert [m["text"] for m in second_file["messages"]] == ["second chat"]
    index = json.loads(store.index_path.read_text(encoding="utf-8"))
    assert index["activeChatId"] == first_id

    back = await store.switch_chat(second.id)
    assert back is not None
    assert [m.text for m in back[1]] == ["second chat"]


@pytest.mark.asyncio
async def test_create_chat_leaves_previous_file_alone(tmp_path: Path) -> None:
    store = await _loaded(tmp_path)
    first_id = store.active_chat_id
    first_path = store.chat_file_path(first_id)
    before = first_path.read_bytes()
    store.append_message(_msg("not flushed"))

    chat, messages = await store.create_chat()

    assert messages == []
    assert chat.id != first_id
    assert chat.title == "Chat 2"
    assert store.active_chat_id == chat.id
    assert store.get_messages() == []
    assert first_path.read_bytes() == before
    assert json.loads(store.chat_file_path(chat.id).read_text(encoding="utf-8"))["messages"] == []


@pytest.mark.asyncio
async def test_metadata_updates_survive_reload(tmp_path: Path) -> None:
    store = await _loaded(tmp_path)
    store.set_thread_id("thread-123")
    store.update_chat_usage(Usage(input_tokens=10, cached_input_tokens=2, output_tokens=5))
    store.update_chat_context(ContextScope.CURRENT_NOTE)
    store.append_message(_msg("persist me"))
    assert await store.save()

    reloaded = await _loaded(tmp_path)
    chat = reloaded.get_active_chat()
    assert chat.thread_id == "thread-123"
    assert chat.usage == Usage(10, 2, 5)
    assert chat.context_scope is ContextScope.CURRENT_NOTE
    assert [m.text for m in reloaded.get_messages()] == ["persist me"]


@pytest.mark.asyncio
async def test_update_message_replaces_text_only(tmp_path: Path) -> None:
    store = await _loaded(tmp_path)
    user = _msg("question")
    assistant = _msg("Thinking...", MessageRole.ASSISTANT)
    store.set_messages([user, assistant])

    store.update_message(assistant.id, "answer")

    messages = store.get_messages()
    assert messages[0] == user
    assert messages[1].id == assistant.id
    assert messages[1].text == "answer"


@pytest.mark.asyncio
async def test_write_failures_are_logged_not_raised(tmp_path: Path, monkeypatch) -> None:
    store = await _loaded(tmp_path)

    def broken(path, payload) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(chat_store_module, "atomic_write_json", broken)
    store.append_message(_msg("kept in memory"))

    assert await store.save() is False
    assert [m.text for m in store.get_messages()] == ["kept in memory"]
    chat, messages = await store.create_chat()
    assert messages == []
    assert store.active_chat_id == chat.id


@pytest.mark.asyncio
async def test_unreadable_chats_dir_is_not_fatal(tmp_path: Path) -> None:
    # A file where the chats directory should be makes mkdir fail.
    (tmp_path / "chats").write_text("", encoding="utf-8")

    store = await _loaded(tmp_path)

    assert len(store.get_chats()) == 1
    assert store.get_messages() == []


@pytest.mark.asyncio
async def test_settings_listeners(tmp_path: Path) -> None:
    store = await _loaded(tmp_path)
    seen: list[Settings] = []

    def broken_listener(settings: Settings) -> None:
        raise ValueError("boom")

    store.on_settings_change(broken_listener)
    unsubscribe = store.on_settings_change(seen.append)

    updated = store.update_settings(internet_access=True, web_search=True)
    assert updated.web_search is True
    assert seen == [updated]

    unsubscribe()
    store.update_settings(model="gpt-5.2-codex")
    assert len(seen) == 1
    assert store.get_settings().model == "gpt-5.2-codex"


@pytest.mark.asyncio
async def test_settings_persist_with_index(tmp_path: Path) -> None:
    store = await _loaded(tmp_path)
    store.update_settings(codex_path_mode="custom", codex_path="/opt/codex")
    assert await store.save_meta()

    reloaded = await _loaded(tmp_path)
    assert reloaded.get_settings().codex_path == "/opt/codex"
    assert reloaded.get_settings().codex_path_mode == "custom"


@pytest.mark.asyncio
async def test_legacy_single_chat_layout_is_migrated(tmp_path: Path) -> None:
    (tmp_path / "data.json").write_text(json.dumps({
        "vaultName": "Old",
        "chat": {
            "threadId": "thread-legacy",
            "messages": [
                {"id": "user-1", "role": "user", "text": "old question", "ts": 1},
                {"id": "assistant-1", "role": "assistant", "text": "old answer", "ts": 2},
            ],
            "updatedAt": 2,
        },
        "settings": {"model": "gpt-5.2-codex"},
    }), encoding="utf-8")

    store = await _loaded(tmp_path)

    chat = store.get_active_chat()
    assert chat.thread_id == "thread-legacy"
    assert [m.text for m in store.get_messages()] == ["old question", "old answer"]
    assert store.get_settings().model == "gpt-5.2-codex"
    index = json.loads(store.index_path.read_text(encoding="utf-8"))
    assert "chat" not in index
    assert index["chats"][0]["threadId"] == "thread-legacy"


@pytest.mark.asyncio
async def test_malformed_messages_are_dropped(tmp_path: Path) -> None:
    store = await _loaded(tmp_path)
    path = store.chat_file_path(store.active_chat_id)
    path.write_text(json.dumps({
        "messages": [
            {"id": "a", "role": "user", "text": "ok", "ts": 1},
            {"id": "b", "role": "robot", "text": "bad role"},
            "garbage",
            {"id": "c", "role": "assistant", "text": "fine", "ts": 2,
             "meta": {"noteName": "n.md", "notePath": "dir/n.md"}},
        ],
        "updatedAt": 2,
    }), encoding="utf-8")

    reloaded = await _loaded(tmp_path)

    messages = reloaded.get_messages()
    assert [m.id for m in messages] == ["a", "c"]
    assert messages[1].meta is not None
    assert messages[1].meta.note_path == "dir/n.md"


@pytest.mark.asyncio
async def test_close_flushes_and_drops_listeners(tmp_path: Path) -> None:
    store = await _loaded(tmp_path)
    seen: list[Settings] = []
    store.on_settings_change(seen.append)
    store.append_message(_msg("bye"))

    await store.close()
    store.update_settings(reasoning="high")

    assert seen == []
    reloaded = await _loaded(tmp_path)
    assert [m.text for m in reloaded.get_messages()] == ["bye"]


@pytest.mark.asyncio
async def test_switch_aborts_when_outgoing_chat_cannot_be_flushed(
    tmp_path: Path, monkeypatch,
) -> None:
    store = await _loaded(tmp_path)
    first_id = store.active_chat_id
    second, _ = await store.create_chat()
    store.append_message(_msg("unsaved"))
    real = chat_store_module.atomic_write_json

    def broken(path, payload) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(chat_store_module, "atomic_write_json", broken)

    assert await store.switch_chat(first_id) is None
    assert store.active_chat_id == second.id
    assert [m.text for m in store.get_messages()] == ["unsaved"]

    monkeypatch.setattr(chat_store_module, "atomic_write_json", real)
    assert await store.switch_chat(first_id) is not None
    back = await store.switch_chat(second.id)

    assert back is not None
    assert [m.text for m in back[1]] == ["unsaved"]


@pytest.mark.asyncio
async def test_persistence_failures_name_the_file(tmp_path: Path, monkeypatch, caplog) -> None:
    store = await _loaded(tmp_path)

    def broken(path, payload) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(chat_store_module, "atomic_write_json", broken)
    with caplog.at_level(logging.WARNING, logger=chat_store_module.__name__):
        assert await store.save_meta() is False

    assert f"Persistence failure for {store.index_path}" in caplog.text
    assert "disk full" in caplog.text
