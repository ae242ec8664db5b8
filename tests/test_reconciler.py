from concurrent.futures import ThreadPoolExecutor

from slack_archive.slack.payloads import parse_user
from slack_archive.slack.reconciler import IdentityReconciler


def test_find_or_create_user_is_idempotent(db, account):
    reconciler = IdentityReconciler(db)
    remote_user = parse_user({"id": "U1", "profile": {"display_name": "Alice"}})

    first = reconciler.find_or_create_user(remote_user, account.id)
    second = reconciler.find_or_create_user(remote_user, account.id)

    assert second.id == first.id
    assert second.anonymous_alias == first.anonymous_alias
    assert len(db.get_all_users(account.id)) == 1


def test_concurrent_thread_creation_converges(db, channel):
    reconciler = IdentityReconciler(db)

    with ThreadPoolExecutor(max_workers=4) as executor:
        threads = list(executor.map(
            lambda slug: reconciler.find_or_create_thread("1609459200.000100", channel.id, 1609459200000, slug),
            ["one", "two", "three", "four"],
        ))

    assert len({thread.id for thread in threads}) == 1
    assert db.get_statistics()["threads"] == 1


def test_resolve_thread_id(db, channel):
    reconciler = IdentityReconciler(db)

    assert reconciler.resolve_thread_id("1609459200.000100", channel.id) is None
    thread = reconciler.find_or_create_thread("1609459200.000100", channel.id, 0, "slug")
    assert reconciler.resolve_thread_id("1609459200.000100", channel.id) == thread.id
    assert reconciler.resolve_thread_id(None, channel.id) is None


def test_resolve_user_id_without_fetching(db, account, slack_client, credential):
    reconciler = IdentityReconciler(db, slack_client, fetch_missing_users=False)

    assert reconciler.resolve_user_id("U404", account.id, credential) is None
    assert reconciler.resolve_user_id(None, account.id, credential) is None
    assert slack_client.called("users.info") == []


def test_resolve_user_id_fetches_missing_users(db, account, slack_client, credential):
    slack_client.profiles["U7"] = {"ok": True, "user": {"id": "U7", "profile": {"real_name": "Grace"}}}
    reconciler = IdentityReconciler(db, slack_client, fetch_missing_users=True)

    user_id = reconciler.resolve_user_id("U7", account.id, credential)

    assert user_id == db.find_user("U7", account.id).id
    assert reconciler.resolve_user_id("U7", account.id, credential) == user_id
    assert len(slack_client.called("users.info")) == 1


def test_missing_user_fetch_failures_leave_author_unresolved(db, account, slack_client, credential):
    slack_client.profiles["U8"] = ConnectionError("timed out")
    reconciler = IdentityReconciler(db, slack_client, fetch_missing_users=True)

    assert reconciler.resolve_user_id("U8", account.id, credential) is None
    assert reconciler.resolve_user_id("B1", account.id, credential) is None
    assert [call[1] for call in slack_client.called("users.info")] == ["U8"]


def test_find_or_create_channel(db, account):
    reconciler = IdentityReconciler(db)

    first = reconciler.find_or_create_channel("C0009", account.id, "random")
    second = reconciler.find_or_create_channel("C0009", account.id)

    assert second.id == first.id
    assert second.name == "random"
