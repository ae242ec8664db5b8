from unittest.mock import Mock

import pytest
from slack_sdk.errors import SlackApiError

from slack_archive.database.records import AttachmentRecord, MessageRecord
from slack_archive.slack.coordinator import SyncCoordinator, safe_filename
from slack_archive.slack.normalizer import ts_to_sent_at
from slack_archive.utils.circuit_breaker import CircuitBreaker, CircuitOpenError


@pytest.fixture
def coordinator(db, slack_client, reporter, importer, tmp_path):
    return SyncCoordinator(
        db_manager=db,
        client=slack_client,
        reporter=reporter,
        importer=importer,
        files_dir=tmp_path / "files",
    )


def seed_workspace(slack_client):
    slack_client.user_pages[None] = slack_client.page(
        [{"id": "U1", "profile": {"display_name": "Alice"}}], next_cursor="u2", key="members"
    )
    slack_client.user_pages["u2"] = slack_client.page(
        [{"id": "U2", "profile": {"display_name": "Bob"}}], key="members"
    )
    slack_client.channel_pages[None] = slack_client.page([
        {"id": "C0001", "name": "general", "is_member": True},
        {"id": "C0002", "name": "random", "is_member": False},
        {"id": "G0003", "name": "secret", "is_member": False, "is_private": True},
    ], key="channels")
    slack_client.add_history_page([
        {"type": "message", "user": "U1", "text": "hello", "ts": "1609459200.000100"},
    ])


def test_sync_workspace(coordinator, slack_client, db, credential):
    seed_workspace(slack_client)

    results = coordinator.sync_workspace(credential)

    assert results["account"] == "T0001"
    assert results["users"] == 2
    assert results["channels"] == 3
    assert results["summary"].saved == 3
    assert [call[1] for call in slack_client.called("conversations.join")] == ["C0002"]
    assert results["statistics"]["users"] == 2

    account = db.find_account("T0001")
    alice = db.find_user("U1", account.id)
    general = db.find_channel("C0001", account.id)
    assert db.get_message(general.id, "1609459200.000100").user_id == alice.id


def test_sync_workspace_without_joining(coordinator, slack_client, credential):
    seed_workspace(slack_client)

    coordinator.sync_workspace(credential, join=False)

    assert slack_client.called("conversations.join") == []


def test_failed_join_is_not_fatal(coordinator, slack_client, db, account, credential):
    slack_client.join_channel = Mock(side_effect=SlackApiError("method_not_supported_for_channel_type", {}))
    channel = db.find_or_create_channel("C0002", account.id, "random")

    assert coordinator.join_channel(channel, credential) is False


def refused(error):
    return SlackApiError(error, {"ok": False, "error": error})


def seed_outside_channels(slack_client, count=6):
    slack_client.channel_pages[None] = slack_client.page(
        [{"id": f"C10{index}", "name": f"public-{index}", "is_member": False} for index in range(count)],
        key="channels",
    )


def test_refused_joins_do_not_abandon_sync(coordinator, slack_client, db, importer, credential):
    seed_outside_channels(slack_client)
    for index in range(6):
        slack_client.join_responses[f"C10{index}"] = refused("missing_scope")
    slack_client.add_history_page([
        {"type": "message", "user": "U1", "text": "hello", "ts": "1609459200.000100"},
    ])

    results = coordinator.sync_workspace(credential)

    assert len(slack_client.called("conversations.join")) == 6
    assert len(slack_client.called("conversations.history")) == 6
    assert results["summary"].saved == 6
    assert not importer.circuit_breaker.is_open


def test_refused_history_does_not_abandon_sync(coordinator, slack_client, importer, reporter, credential):
    seed_outside_channels(slack_client)
    slack_client.history_pages[None] = refused("not_in_channel")

    results = coordinator.sync_workspace(credential, join=False)

    assert len(slack_client.called("conversations.history")) == 6
    assert results["summary"].complete is False
    assert len(reporter.errors) == 6
    assert importer.circuit_breaker.consecutive_failures == 0


def test_open_circuit_abandons_sync(db, slack_client, reporter, make_importer, tmp_path, credential):
    coordinator = SyncCoordinator(
        db_manager=db,
        client=slack_client,
        reporter=reporter,
        importer=make_importer(circuit_breaker=CircuitBreaker(threshold=1)),
        files_dir=tmp_path,
    )
    seed_workspace(slack_client)
    slack_client.history_pages[None] = ConnectionError("down")

    with pytest.raises(CircuitOpenError):
        coordinator.sync_workspace(credential)

    assert len(slack_client.called("conversations.history")) == 1


def test_sync_channel(coordinator, slack_client, db, credential):
    seed_workspace(slack_client)

    summary = coordinator.sync_channel("C0001", credential)

    assert summary.saved == 1
    assert db.find_channel("C0001", db.find_account("T0001").id) is not None


def test_fetch_and_save_user(coordinator, slack_client, db, account, credential):
    slack_client.profiles["U5"] = {"ok": True, "user": {"id": "U5", "is_admin": True, "profile": {"real_name": "Eve"}}}

    user = coordinator.fetch_and_save_user("U5", credential, account.id)

    assert user.display_name == "Eve"
    assert user.is_admin is True
    assert db.find_user("U5", account.id).id == user.id


def test_import_message(coordinator, slack_client, db, credential):
    slack_client.single_messages["1609459200.000100"] = slack_client.page(
        [{"type": "message", "user": "U1", "text": "live", "ts": "1609459200.000100"}]
    )

    summary = coordinator.import_message("C0001", "1609459200.000100", credential)

    assert summary.saved == 1


class TestDownloads:

    @pytest.fixture
    def pending(self, db, channel):
        db.create_or_update_message(MessageRecord(
            channel_id=channel.id,
            external_message_id="1609459200.000100",
            sent_at=ts_to_sent_at("1609459200.000100"),
            attachments=[
                AttachmentRecord("F1", name="report (final).pdf", url_private="https://files.slack.com/F1"),
                AttachmentRecord("F2", name="broken.txt", url_private="https://files.slack.com/F2"),
            ],
        ))

    def test_downloads_pending_files(self, coordinator, slack_client, db, reporter, pending, tmp_path, credential):
        slack_client.files["https://files.slack.com/F1"] = Mock(iter_content=Mock(return_value=[b"%PDF", b"-1.4"]))
        slack_client.files["https://files.slack.com/F2"] = PermissionError("403 Forbidden")

        assert coordinator.download_attachments(credential) == 1

        path = tmp_path / "files" / "F1_report final.pdf"
        assert path.read_bytes() == b"%PDF-1.4"
        remaining = db.get_pending_attachments()
        assert [attachment.external_attachment_id for attachment in remaining] == ["F2"]
        assert len(reporter.errors) == 1

    def test_interrupted_download_is_cleaned_up(self, coordinator, slack_client, db, reporter, pending, tmp_path, credential):
        def chunks(chunk_size):
            yield b"%PDF"
            raise ConnectionError("connection reset mid-stream")

        response = Mock(iter_content=chunks)
        slack_client.files["https://files.slack.com/F1"] = response
        slack_client.files["https://files.slack.com/F2"] = PermissionError("403 Forbidden")

        assert coordinator.download_attachments(credential) == 0

        response.close.assert_called_once()
        assert list((tmp_path / "files").iterdir()) == []
        assert len(db.get_pending_attachments()) == 2
        assert any(isinstance(error, ConnectionError) for error in reporter.errors)


def test_safe_filename():
    assert safe_filename("../etc/passwd") == "..etcpasswd"
    assert safe_filename("My Report_v2.pdf") == "My Report_v2.pdf"
