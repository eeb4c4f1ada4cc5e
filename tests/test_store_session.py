"""Session, account and profile behaviour of :class:`AppStateStore`."""

import asyncio

import pytest

from conftest import seed_user
from moodboard.core.errors import AuthError, PermissionDenied, RemoteError
from moodboard.core.transitions import InvalidTransition
from moodboard.data.models import SessionStatus


def test_starts_loading_then_unauthenticated(store) -> None:
    assert store.is_loading
    asyncio.run(store.start())
    assert store.state.status is SessionStatus.UNAUTHENTICATED
    assert store.user is None


def test_start_subscribes_once(store, identity) -> None:
    async def scenario():
        await store.start()
        await store.start()

    asyncio.run(scenario())
    assert len(identity._observers) == 1


def test_login_loads_existing_profile(alice) -> None:
    assert alice.state.is_authenticated
    assert alice.user.username == "Alice"
    assert alice.auth_error is None
    assert not alice.state.has_posted_today


def test_missing_profile_gets_default(store, documents, identity) -> None:
    identity.register("ghost@example.com", "pw", uid="ghost")

    async def scenario():
        await store.start()
        await store.login("ghost@example.com", "pw")

    asyncio.run(scenario())
    user = store.user
    assert user.id == "ghost"
    assert user.username.startswith("User")
    assert user.badges == ["special_founding"]
    assert user.streak == 0 and user.mood_score == 0

    doc = asyncio.run(documents.get("users", "ghost"))
    assert doc["username"] == user.username
    assert doc["badges"] == ["special_founding"]


def test_founding_badge_and_mood_score_backfilled(store, documents, identity) -> None:
    seed_user(documents, "dave", "Dave", badges=[], moodScore=0)
    for i in range(2):
        asyncio.run(documents.set("vibes", f"v{i}", {"userId": "dave", "timestamp": i}))
    identity.register("dave@example.com", "pw", uid="dave")

    async def scenario():
        await store.start()
        await store.login("dave@example.com", "pw")

    asyncio.run(scenario())
    assert store.user.mood_score == 2
    assert store.user.badges == ["special_founding"]
    doc = asyncio.run(documents.get("users", "dave"))
    assert doc["moodScore"] == 2
    assert doc["badges"] == ["special_founding"]


def test_profile_failure_sets_database_error(store, documents, identity, monkeypatch) -> None:
    identity.register("x@example.com", "pw", uid="x")

    async def broken(collection, doc_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(documents, "get", broken)

    async def scenario():
        await store.start()
        await store.login("x@example.com", "pw")

    asyncio.run(scenario())
    assert store.state.status is SessionStatus.UNAUTHENTICATED
    assert store.auth_error == "Database Error: boom"


def test_sign_up_uses_chosen_username(store, documents) -> None:
    async def scenario():
        await store.start()
        return await store.sign_up("new@example.com", "secret", "Newbie")

    user = asyncio.run(scenario())
    assert user.username == "Newbie"
    assert store.state.is_authenticated
    assert asyncio.run(documents.get("users", user.id))["username"] == "Newbie"


def test_sign_up_without_observer_creates_profile(store, documents) -> None:
    user = asyncio.run(store.sign_up("solo@example.com", "secret", "Solo"))
    assert user.username == "Solo"
    assert asyncio.run(documents.get("users", user.id)) is not None


def test_sign_up_duplicate_email(store, identity) -> None:
    identity.register("taken@example.com", "pw", uid="t")
    with pytest.raises(AuthError):
        asyncio.run(store.sign_up("taken@example.com", "pw", "Taken"))
    assert store.auth_error == "An account already exists with this email"


@pytest.mark.parametrize(
    "email, password, message",
    [
        ("alice@example.com", "nope", "Incorrect password"),
        ("nobody@example.com", "pw", "No account found with this email"),
    ],
)
def test_login_errors_are_user_facing(alice, email, password, message) -> None:
    with pytest.raises(AuthError):
        asyncio.run(alice.login(email, password))
    assert alice.auth_error == message
    alice.clear_auth_error()
    assert alice.auth_error is None


def test_logout(alice) -> None:
    asyncio.run(alice.logout())
    assert alice.user is None
    assert alice.state.status is SessionStatus.UNAUTHENTICATED
    assert alice.notifications == ()


def test_delete_account_cascades(alice, documents, identity) -> None:
    async def scenario():
        await alice.post_mood("Happy", "hello", "Pune")
        community = await alice.create_community("Calm Circle", "breathe")
        await alice.create_community_post(community.id, "first!")
        await documents.set("vibes", "bobs", {"userId": "bob", "timestamp": 1})
        await alice.delete_account()

    asyncio.run(scenario())
    assert identity.deleted == ["alice"]
    assert alice.user is None
    assert asyncio.run(documents.get("users", "alice")) is None
    assert [v["id"] for v in asyncio.run(documents.query("vibes"))] == ["bobs"]
    assert asyncio.run(documents.query("communities")) == []
    assert asyncio.run(documents.query("community_posts")) == []


def test_delete_account_failure_keeps_session(alice, identity, monkeypatch) -> None:
    async def refuse():
        raise RuntimeError("requires recent login")

    monkeypatch.setattr(identity, "delete_current_account", refuse)
    with pytest.raises(RemoteError):
        asyncio.run(alice.delete_account())
    assert alice.state.is_authenticated


def test_update_username(alice, documents) -> None:
    asyncio.run(alice.update_username("  Alicia "))
    assert alice.user.username == "Alicia"
    assert asyncio.run(documents.get("users", "alice"))["username"] == "Alicia"

    # keeping one's own name is allowed, taking someone else's is not
    asyncio.run(alice.update_username("Alicia"))
    with pytest.raises(InvalidTransition):
        asyncio.run(alice.update_username("Bob"))
    assert alice.user.username == "Alicia"


def test_regenerate_username(alice) -> None:
    name = asyncio.run(alice.regenerate_username())
    assert alice.user.username == name
    assert name[-1].isdigit()


def test_update_profile_image(alice, documents) -> None:
    with pytest.raises(ValueError):
        asyncio.run(alice.update_profile_image("https://example.com/a.png"))
    uri = "data:image/png;base64,AAAA"
    asyncio.run(alice.update_profile_image(uri))
    assert alice.user.avatar_url == uri
    assert asyncio.run(documents.get("users", "alice"))["avatarUrl"] == uri


def test_theme_and_listeners(alice) -> None:
    seen = []
    unsubscribe = alice.subscribe(lambda state: seen.append(state.theme))
    alice.set_theme("dark")
    unsubscribe()
    alice.set_theme("light")
    assert seen == ["dark"]
    with pytest.raises(ValueError):
        alice.set_theme("sepia")


def test_signed_out_store_rejects_owner_operations(store) -> None:
    with pytest.raises(PermissionDenied):
        asyncio.run(store.delete_vibe("v"))
