"""
Tests for notification upsert and clearing rules.
"""

import pytest

from utils.schemas import NotificationType


class TestNotificationCenter:
    @pytest.mark.asyncio
    async def test_reauth_notification_content(self, services, user_id):
        note = await services.notifications.notify_reauth_required(user_id, "calendar")
        assert note.title == "Google Calendar Reconnection Required"
        assert note.severity == "warning"
        assert note.action_url == "/dashboard/integrations"
        assert note.action_label == "Reconnect"

    @pytest.mark.asyncio
    async def test_one_unread_per_type(self, services, user_id):
        first = await services.notifications.notify_sync_failures(user_id, "github", 1)
        second = await services.notifications.notify_sync_failures(user_id, "github", 2)

        assert first.id == second.id
        notes = await services.notifications.get_notifications(user_id)
        assert len(notes) == 1
        assert "2 times in a row" in notes[0].message
        assert notes[0].metadata["failure_count"] == 2

    @pytest.mark.asyncio
    async def test_types_and_providers_kept_apart(self, services, user_id):
        await services.notifications.notify_sync_failures(user_id, "github", 1)
        await services.notifications.notify_reauth_required(user_id, "github")
        await services.notifications.notify_sync_failures(user_id, "slack", 1)
        assert await services.notifications.get_unread_count(user_id) == 3

    @pytest.mark.asyncio
    async def test_new_row_after_read(self, services, user_id):
        note = await services.notifications.notify_token_expired(user_id, "notion")
        await services.notifications.mark_as_read(user_id, note.id)
        again = await services.notifications.notify_token_expired(user_id, "notion")

        assert again.id != note.id
        assert await services.notifications.get_unread_count(user_id) == 1
        assert len(await services.notifications.get_notifications(user_id)) == 2

    @pytest.mark.asyncio
    async def test_clear_single_type(self, services, user_id):
        await services.notifications.notify_sync_failures(user_id, "github", 3)
        await services.notifications.notify_reauth_required(user_id, "github")

        cleared = await services.notifications.clear(user_id, "github", NotificationType.SYNC_FAILURES)
        assert cleared == 1
        unread = await services.notifications.get_notifications(user_id, unread_only=True)
        assert [n.type for n in unread] == ["reauth_required"]

    @pytest.mark.asyncio
    async def test_clear_provider(self, services, user_id):
        await services.notifications.notify_sync_failures(user_id, "github", 3)
        await services.notifications.notify_reauth_required(user_id, "github")
        await services.notifications.notify_reauth_required(user_id, "slack")

        assert await services.notifications.clear_provider_notifications(user_id, "github") == 2
        assert await services.notifications.get_unread_count(user_id) == 1

    @pytest.mark.asyncio
    async def test_mark_all_and_delete(self, services, user_id):
        a = await services.notifications.notify_sync_failures(user_id, "github", 1)
        await services.notifications.notify_sync_failures(user_id, "slack", 1)

        assert await services.notifications.mark_all_as_read(user_id) == 2
        assert await services.notifications.get_unread_count(user_id) == 0
        assert await services.notifications.delete(user_id, a.id) is True
        assert await services.notifications.delete(user_id, a.id) is False

    @pytest.mark.asyncio
    async def test_other_users_cannot_touch(self, services, user_id):
        note = await services.notifications.notify_reauth_required(user_id, "github")
        stranger = "00000000-0000-0000-0000-000000000001"
        assert await services.notifications.mark_as_read(stranger, note.id) is False
        assert await services.notifications.delete(stranger, note.id) is False
        assert await services.notifications.get_unread_count(user_id) == 1
