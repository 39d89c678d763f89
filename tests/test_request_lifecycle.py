"""Request lifecycle: request, withdraw, accept, reject and mark-donated transitions."""

import asyncio

import pytest

from errors import ConflictError, NotFoundError, UnauthorizedError


def _request_id(book, user_id):
    return next(str(r["_id"]) for r in book["requests"] if r["user_id"] == user_id and r["status"] == "Pending")


def _statuses(book):
    return {r["user_id"]: r["status"] for r in book["requests"]}


async def _types(store, user_id, unread_only=False):
    return [n["type"] for n in await store.list_for_user(user_id, unread_only=unread_only)]


async def test_request_marks_book_requested_and_notifies_owner(lifecycle, store, users, book_id):
    book = await lifecycle.request(book_id, users["alice"])

    assert book["status"] == "Requested"
    assert _statuses(book) == {users["alice"]: "Pending"}

    [notification] = await store.list_for_user(users["owner"])
    assert notification["type"] == "book-request"
    assert notification["from_user_id"] == users["alice"]
    assert notification["request_id"] == str(book["requests"][0]["_id"])
    assert "Alice" in notification["message"]


async def test_request_failures(lifecycle, users, book_id):
    with pytest.raises(NotFoundError):
        await lifecycle.request("64b000000000000000000000", users["alice"])

    with pytest.raises(ConflictError) as exc:
        await lifecycle.request(book_id, users["owner"])
    assert exc.value.code == "OWN_BOOK"

    await lifecycle.request(book_id, users["alice"])
    with pytest.raises(ConflictError) as exc:
        await lifecycle.request(book_id, users["alice"])
    assert exc.value.code == "ALREADY_REQUESTED"


async def test_request_blocked_while_chat_is_active(lifecycle, chats, users, book_id):
    await chats.init_or_reactivate(book_id, users["owner"], users["bob"])

    with pytest.raises(ConflictError) as exc:
        await lifecycle.request(book_id, users["bob"])
    assert exc.value.code == "ACTIVE_CHAT_EXISTS"


async def test_withdraw_reverts_to_available(lifecycle, store, users, book_id):
    await lifecycle.request(book_id, users["alice"])

    book = await lifecycle.withdraw(book_id, users["alice"])

    assert book["status"] == "Available"
    assert book["accepted_request"] is None
    assert _statuses(book) == {users["alice"]: "Withdrawn"}
    assert await _types(store, users["owner"]) == ["book-withdraw", "book-request"]
    assert await _types(store, users["owner"], unread_only=True) == ["book-withdraw"]


async def test_withdraw_keeps_requested_while_others_pending(lifecycle, users, book_id):
    await lifecycle.request(book_id, users["alice"])
    await lifecycle.request(book_id, users["bob"])

    book = await lifecycle.withdraw(book_id, users["alice"])

    assert book["status"] == "Requested"


async def test_withdraw_without_pending_request(lifecycle, users, book_id):
    with pytest.raises(NotFoundError) as exc:
        await lifecycle.withdraw(book_id, users["alice"])
    assert exc.value.code == "NO_ACTIVE_REQUEST"


async def test_request_withdraw_request_again(lifecycle, users, book_id):
    await lifecycle.request(book_id, users["alice"])
    await lifecycle.withdraw(book_id, users["alice"])

    book = await lifecycle.request(book_id, users["alice"])

    assert book["status"] == "Requested"
    assert [r["status"] for r in book["requests"]] == ["Withdrawn", "Pending"]


async def test_accept_rejects_every_other_pending_request(lifecycle, chats, store, mock_db, users, book_id):
    await lifecycle.request(book_id, users["alice"])
    book = await lifecycle.request(book_id, users["bob"])

    book = await lifecycle.accept(book_id, _request_id(book, users["alice"]), users["owner"])

    assert _statuses(book) == {users["alice"]: "Accepted", users["bob"]: "Rejected"}
    assert book["accepted_request"] == users["alice"]
    assert book["status"] == "Requested"

    stored = await mock_db.books.find_one({"_id": book["_id"]})
    assert _statuses(stored) == _statuses(book)

    chat = await chats.find_active(book_id, users["owner"], users["alice"])
    assert chat is not None

    [accepted] = await store.list_for_user(users["alice"])
    assert accepted["type"] == "book-accepted"
    assert accepted["chat_id"] == str(chat["_id"])

    [rejected] = await store.list_for_user(users["bob"])
    assert rejected["type"] == "book-rejected"

    owner_unread = await store.list_for_user(users["owner"], unread_only=True)
    assert [n["type"] for n in owner_unread] == ["chat-started"]
    assert owner_unread[0]["chat_id"] == str(chat["_id"])


async def test_accept_requires_owner_and_pending_request(lifecycle, users, book_id):
    book = await lifecycle.request(book_id, users["alice"])
    request_id = _request_id(book, users["alice"])

    with pytest.raises(UnauthorizedError):
        await lifecycle.accept(book_id, request_id, users["bob"])

    with pytest.raises(NotFoundError) as exc:
        await lifecycle.accept(book_id, "64b000000000000000000000", users["owner"])
    assert exc.value.code == "REQUEST_NOT_FOUND"

    await lifecycle.accept(book_id, request_id, users["owner"])
    with pytest.raises(NotFoundError):
        await lifecycle.accept(book_id, request_id, users["owner"])


async def test_concurrent_accepts_have_one_winner(lifecycle, users, book_id):
    await lifecycle.request(book_id, users["alice"])
    book = await lifecycle.request(book_id, users["bob"])

    results = await asyncio.gather(
        lifecycle.accept(book_id, _request_id(book, users["alice"]), users["owner"]),
        lifecycle.accept(book_id, _request_id(book, users["bob"]), users["owner"]),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], NotFoundError)
    assert list(_statuses(winners[0]).values()).count("Accepted") == 1


async def test_accepting_a_newcomer_demotes_the_previous_winner(lifecycle, chats, store, users, book_id):
    book = await lifecycle.request(book_id, users["alice"])
    await lifecycle.accept(book_id, _request_id(book, users["alice"]), users["owner"])
    book = await lifecycle.request(book_id, users["bob"])

    book = await lifecycle.accept(book_id, _request_id(book, users["bob"]), users["owner"])

    assert _statuses(book) == {users["alice"]: "Rejected", users["bob"]: "Accepted"}
    assert await chats.find_active(book_id, users["owner"], users["alice"]) is None
    assert await chats.find_active(book_id, users["owner"], users["bob"]) is not None
    assert (await _types(store, users["alice"]))[0] == "book-rejected"


async def test_closed_chat_needs_a_new_request_accept_cycle(lifecycle, chats, users, book_id):
    book = await lifecycle.request(book_id, users["alice"])
    await lifecycle.accept(book_id, _request_id(book, users["alice"]), users["owner"])
    chat = await chats.find_active(book_id, users["owner"], users["alice"])
    await chats.close(str(chat["_id"]), users["alice"])

    book = await lifecycle.request(book_id, users["alice"])
    book = await lifecycle.accept(book_id, _request_id(book, users["alice"]), users["owner"])

    assert [r["status"] for r in book["requests"]] == ["Rejected", "Accepted"]
    revived = await chats.find_active(book_id, users["owner"], users["alice"])
    assert revived["_id"] == chat["_id"]


async def test_reject_reverts_status_and_deactivates_chat(lifecycle, chats, store, users, book_id):
    await lifecycle.request(book_id, users["alice"])
    await chats.init_or_reactivate(book_id, users["owner"], users["alice"])

    book = await lifecycle.reject(book_id, users["alice"], users["owner"])

    assert book["status"] == "Available"
    assert book["accepted_request"] is None
    assert _statuses(book) == {users["alice"]: "Rejected"}
    assert await chats.find_active(book_id, users["owner"], users["alice"]) is None
    assert await _types(store, users["alice"]) == ["book-rejected"]
    assert await store.unread_count(users["owner"]) == 0


async def test_reject_failures(lifecycle, users, book_id):
    await lifecycle.request(book_id, users["alice"])

    with pytest.raises(UnauthorizedError):
        await lifecycle.reject(book_id, users["alice"], users["bob"])

    with pytest.raises(NotFoundError) as exc:
        await lifecycle.reject(book_id, users["bob"], users["owner"])
    assert exc.value.code == "REQUEST_NOT_FOUND"


async def test_mark_donated_closes_all_chats_on_the_book(lifecycle, chats, users, book_id):
    book = await lifecycle.request(book_id, users["alice"])
    await lifecycle.accept(book_id, _request_id(book, users["alice"]), users["owner"])
    await chats.init_or_reactivate(book_id, users["owner"], users["bob"])
    chat = await chats.find_active(book_id, users["owner"], users["alice"])

    book = await lifecycle.mark_donated(book_id, users["owner"])

    assert book["status"] == "Donated"
    assert book["donated_to"] == users["alice"]
    assert await chats.find_active(book_id, users["owner"], users["alice"]) is None
    assert await chats.find_active(book_id, users["owner"], users["bob"]) is None
    with pytest.raises(ConflictError) as exc:
        await chats.post_message(str(chat["_id"]), users["alice"], "thanks!")
    assert exc.value.code == "CHAT_TERMINATED"


async def test_mark_donated_requires_owner_and_accepted_request(lifecycle, users, book_id):
    await lifecycle.request(book_id, users["alice"])

    with pytest.raises(UnauthorizedError) as exc:
        await lifecycle.mark_donated(book_id, users["owner"])
    assert exc.value.code == "NO_ACCEPTED_REQUEST"

    with pytest.raises(UnauthorizedError) as exc:
        await lifecycle.mark_donated(book_id, users["alice"])
    assert exc.value.code == "NOT_OWNER"


async def test_donated_book_is_frozen(lifecycle, users, book_id):
    await lifecycle.request(book_id, users["bob"])
    book = await lifecycle.request(book_id, users["alice"])
    await lifecycle.accept(book_id, _request_id(book, users["alice"]), users["owner"])
    book = await lifecycle.request(book_id, users["bob"])
    bob_request = _request_id(book, users["bob"])
    await lifecycle.mark_donated(book_id, users["owner"])

    attempts = [
        lifecycle.request(book_id, users["bob"]),
        lifecycle.withdraw(book_id, users["bob"]),
        lifecycle.accept(book_id, bob_request, users["owner"]),
        lifecycle.reject(book_id, users["bob"], users["owner"]),
        lifecycle.mark_donated(book_id, users["owner"]),
    ]
    for attempt in attempts:
        with pytest.raises(ConflictError) as exc:
            await attempt
        assert exc.value.code == "ALREADY_DONATED"
