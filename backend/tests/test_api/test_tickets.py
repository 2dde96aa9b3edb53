"""Tests for support ticket endpoints — user threads and the admin desk."""

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ticket import Ticket, TicketReply
from app.models.user import User

pytestmark = pytest.mark.asyncio

TICKET = {
    "subject": "Payment not credited",
    "description": "I paid for the 550 pack an hour ago but my balance is unchanged.",
    "category": "billing",
}


async def _open_ticket(client: AsyncClient, headers: dict, **overrides) -> dict:
    response = await client.post("/api/v1/tickets", json={**TICKET, **overrides}, headers=headers)
    assert response.status_code == 201
    return response.json()


class TestUserTickets:
    async def test_create_ticket(self, client: AsyncClient, test_user: User, auth_headers: dict):
        data = await _open_ticket(client, auth_headers, priority="high")

        assert data["user_id"] == str(test_user.id)
        assert data["status"] == "open"
        assert data["priority"] == "high"
        assert data["assigned_to_id"] is None
        assert data["reply_count"] == 0

    async def test_default_priority(self, client: AsyncClient, auth_headers: dict):
        data = await _open_ticket(client, auth_headers)
        assert data["priority"] == "normal"

    @pytest.mark.parametrize(
        "overrides",
        [{"subject": "Hi"}, {"description": "too short"}, {"category": "refunds"}, {"priority": "critical"}],
    )
    async def test_validation(self, client: AsyncClient, auth_headers: dict, overrides: dict):
        response = await client.post("/api/v1/tickets", json={**TICKET, **overrides}, headers=auth_headers)
        assert response.status_code == 422

    async def test_list_mine(self, client: AsyncClient, auth_headers: dict, user_factory, headers_for):
        await _open_ticket(client, auth_headers)
        await _open_ticket(client, auth_headers, category="technical")
        other = await user_factory(name="Other")
        await _open_ticket(client, headers_for(other))

        response = await client.get("/api/v1/tickets/mine", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["page_size"] == 10
        assert data["total_pages"] == 1

    async def test_list_mine_status_filter(self, client: AsyncClient, auth_headers: dict):
        ticket = await _open_ticket(client, auth_headers)
        await _open_ticket(client, auth_headers)
        await client.post(f"/api/v1/tickets/{ticket['id']}/close", headers=auth_headers)

        response = await client.get("/api/v1/tickets/mine", params={"status": "closed"}, headers=auth_headers)
        assert [t["id"] for t in response.json()["items"]] == [ticket["id"]]

    async def test_other_users_ticket_forbidden(self, client: AsyncClient, auth_headers: dict, user_factory, headers_for):
        other = await user_factory(name="Other")
        ticket = await _open_ticket(client, headers_for(other))

        response = await client.get(f"/api/v1/tickets/{ticket['id']}", headers=auth_headers)
        assert response.status_code == 403

    async def test_missing_ticket(self, client: AsyncClient, auth_headers: dict):
        response = await client.get(f"/api/v1/tickets/{uuid.uuid4()}", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "Ticket not found"

    async def test_staff_can_read_any_ticket(self, client: AsyncClient, auth_headers: dict, support_headers: dict):
        ticket = await _open_ticket(client, auth_headers)
        response = await client.get(f"/api/v1/tickets/{ticket['id']}", headers=support_headers)
        assert response.status_code == 200


class TestReplies:
    async def test_reply_and_count(self, client: AsyncClient, auth_headers: dict):
        ticket = await _open_ticket(client, auth_headers)

        response = await client.post(
            f"/api/v1/tickets/{ticket['id']}/replies", json={"message": "Any update?"}, headers=auth_headers
        )
        assert response.status_code == 201
        assert response.json()["is_internal"] is False

        detail = await client.get(f"/api/v1/tickets/{ticket['id']}", headers=auth_headers)
        assert detail.json()["reply_count"] == 1

    async def test_user_cannot_post_internal(self, client: AsyncClient, auth_headers: dict):
        ticket = await _open_ticket(client, auth_headers)
        response = await client.post(
            f"/api/v1/tickets/{ticket['id']}/replies",
            json={"message": "sneaky", "is_internal": True},
            headers=auth_headers,
        )
        assert response.json()["is_internal"] is False

    async def test_internal_replies_hidden_from_owner(
        self, client: AsyncClient, auth_headers: dict, support_headers: dict
    ):
        ticket = await _open_ticket(client, auth_headers)
        url = f"/api/v1/tickets/{ticket['id']}/replies"
        await client.post(url, json={"message": "Looking into it"}, headers=support_headers)
        internal = await client.post(url, json={"message": "Check ledger", "is_internal": True}, headers=support_headers)
        assert internal.json()["is_internal"] is True

        owner_view = await client.get(url, headers=auth_headers)
        staff_view = await client.get(url, headers=support_headers)

        assert [r["message"] for r in owner_view.json()] == ["Looking into it"]
        assert len(staff_view.json()) == 2

    async def test_closed_ticket_rejects_replies(self, client: AsyncClient, auth_headers: dict):
        ticket = await _open_ticket(client, auth_headers)
        await client.post(f"/api/v1/tickets/{ticket['id']}/close", headers=auth_headers)

        response = await client.post(
            f"/api/v1/tickets/{ticket['id']}/replies", json={"message": "Hello?"}, headers=auth_headers
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot reply to a closed ticket"


class TestClose:
    async def test_close_own_ticket(self, client: AsyncClient, auth_headers: dict):
        ticket = await _open_ticket(client, auth_headers)
        response = await client.post(f"/api/v1/tickets/{ticket['id']}/close", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "closed"
        assert response.json()["resolved_at"] is not None

        again = await client.post(f"/api/v1/tickets/{ticket['id']}/close", headers=auth_headers)
        assert again.status_code == 400

    async def test_cannot_close_others_ticket(self, client: AsyncClient, auth_headers: dict, support_headers: dict):
        ticket = await _open_ticket(client, auth_headers)
        response = await client.post(f"/api/v1/tickets/{ticket['id']}/close", headers=support_headers)
        assert response.status_code == 403


# ---------------------------------------------------------------------------
# Admin desk
# ---------------------------------------------------------------------------


class TestAdminList:
    URL = "/api/v1/admin/tickets"

    async def test_requires_ticket_read(self, client: AsyncClient, auth_headers: dict):
        response = await client.get(self.URL, headers=auth_headers)
        assert response.status_code == 403

    async def test_filters(self, client: AsyncClient, auth_headers: dict, admin_headers: dict):
        await _open_ticket(client, auth_headers, priority="urgent")
        await _open_ticket(client, auth_headers, category="technical", subject="Chat keeps crashing")

        by_priority = await client.get(self.URL, params={"priority": "urgent"}, headers=admin_headers)
        assert by_priority.json()["total"] == 1

        by_category = await client.get(self.URL, params={"category": "technical"}, headers=admin_headers)
        assert by_category.json()["items"][0]["subject"] == "Chat keeps crashing"

        by_search = await client.get(self.URL, params={"search": "crashing"}, headers=admin_headers)
        assert by_search.json()["total"] == 1

        unassigned = await client.get(self.URL, params={"assigned_to_id": "unassigned"}, headers=admin_headers)
        assert unassigned.json()["total"] == 2

    async def test_bad_assignee_filter(self, client: AsyncClient, admin_headers: dict):
        response = await client.get(self.URL, params={"assigned_to_id": "bob"}, headers=admin_headers)
        assert response.status_code == 400

    async def test_sort_by_priority(self, client: AsyncClient, auth_headers: dict, support_headers: dict):
        for priority in ("normal", "urgent", "low", "high"):
            await _open_ticket(client, auth_headers, priority=priority)

        response = await client.get(
            self.URL, params={"sort_by": "priority", "sort_order": "desc"}, headers=support_headers
        )
        assert [t["priority"] for t in response.json()["items"]] == ["urgent", "high", "normal", "low"]

    async def test_pagination(self, client: AsyncClient, auth_headers: dict, admin_headers: dict):
        for _ in range(3):
            await _open_ticket(client, auth_headers)

        response = await client.get(self.URL, params={"page": 2, "page_size": 2}, headers=admin_headers)
        data = response.json()
        assert data["total"] == 3
        assert data["total_pages"] == 2
        assert len(data["items"]) == 1


class TestAdminActions:
    async def test_assign_to_self_moves_to_in_progress(
        self, client: AsyncClient, auth_headers: dict, support_user: User, support_headers: dict
    ):
        ticket = await _open_ticket(client, auth_headers)

        response = await client.post(f"/api/v1/admin/tickets/{ticket['id']}/assign", json={}, headers=support_headers)

        assert response.status_code == 200
        assert response.json()["assigned_to_id"] == str(support_user.id)
        assert response.json()["status"] == "in_progress"

        activities = await client.get(f"/api/v1/admin/tickets/{ticket['id']}/activities", headers=support_headers)
        types = [a["type"] for a in activities.json()]
        assert set(types) == {"created", "assigned", "status_change"}
        status_change = next(a for a in activities.json() if a["type"] == "status_change")
        assert status_change["metadata"] == {"old_status": "open", "new_status": "in_progress"}

        mine = await client.get("/api/v1/admin/tickets/assigned-to-me", headers=support_headers)
        assert [t["id"] for t in mine.json()["items"]] == [ticket["id"]]

    async def test_assign_unknown_user(self, client: AsyncClient, auth_headers: dict, admin_headers: dict):
        ticket = await _open_ticket(client, auth_headers)
        response = await client.post(
            f"/api/v1/admin/tickets/{ticket['id']}/assign",
            json={"assigned_to_id": str(uuid.uuid4())},
            headers=admin_headers,
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "Assignee not found"

    async def test_read_only_role_cannot_assign(
        self, client: AsyncClient, auth_headers: dict, role_factory, user_factory, headers_for
    ):
        role = await role_factory("viewer", {"ticket": {"read": True}})
        viewer = await user_factory(name="Viewer", role=role)
        ticket = await _open_ticket(client, auth_headers)

        response = await client.post(
            f"/api/v1/admin/tickets/{ticket['id']}/assign", json={}, headers=headers_for(viewer)
        )
        assert response.status_code == 403

    async def test_status_change_stamps_and_clears_resolved_at(
        self, client: AsyncClient, auth_headers: dict, admin_headers: dict
    ):
        ticket = await _open_ticket(client, auth_headers)
        url = f"/api/v1/admin/tickets/{ticket['id']}/status"

        resolved = await client.patch(url, json={"status": "resolved"}, headers=admin_headers)
        assert resolved.json()["status"] == "resolved"
        assert resolved.json()["resolved_at"] is not None

        reopened = await client.patch(url, json={"status": "open"}, headers=admin_headers)
        assert reopened.json()["resolved_at"] is None

    async def test_priority_change_logged(self, client: AsyncClient, auth_headers: dict, admin_headers: dict):
        ticket = await _open_ticket(client, auth_headers)
        response = await client.patch(
            f"/api/v1/admin/tickets/{ticket['id']}/priority", json={"priority": "urgent"}, headers=admin_headers
        )
        assert response.json()["priority"] == "urgent"

        activities = await client.get(f"/api/v1/admin/tickets/{ticket['id']}/activities", headers=admin_headers)
        change = next(a for a in activities.json() if a["type"] == "priority_change")
        assert change["metadata"] == {"old_priority": "normal", "new_priority": "urgent"}
        assert change["content"] == "Priority changed from normal to urgent"

    async def test_add_note(self, client: AsyncClient, auth_headers: dict, admin_headers: dict):
        ticket = await _open_ticket(client, auth_headers)
        response = await client.post(
            f"/api/v1/admin/tickets/{ticket['id']}/activities",
            json={"content": "Escalated to billing"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["type"] == "note"

    async def test_assignable_users(
        self, client: AsyncClient, admin_user: User, support_user: User, test_user: User, admin_headers: dict
    ):
        response = await client.get("/api/v1/admin/tickets/assignable-users", headers=admin_headers)
        ids = {u["id"] for u in response.json()}
        assert ids == {str(admin_user.id), str(support_user.id)}

    async def test_assignable_users_needs_update_permission(
        self, client: AsyncClient, role_factory, user_factory, headers_for
    ):
        viewer = await user_factory(name="Viewer", role=await role_factory("viewer", {"ticket": {"read": True}}))

        response = await client.get("/api/v1/admin/tickets/assignable-users", headers=headers_for(viewer))
        assert response.status_code == 403


class TestStats:
    async def test_counts_and_resolution_time(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, admin_headers: dict
    ):
        tickets = [
            Ticket(user_id=test_user.id, subject="A", description="x" * 20, category="billing", priority="high"),
            Ticket(user_id=test_user.id, subject="B", description="x" * 20, category="technical", status="resolved"),
            Ticket(user_id=test_user.id, subject="C", description="x" * 20, category="billing", status="closed"),
        ]
        db_session.add_all(tickets)
        await db_session.flush()
        for ticket, hours in ((tickets[1], 2), (tickets[2], 4)):
            ticket.resolved_at = ticket.created_at + timedelta(hours=hours)
        await db_session.flush()

        response = await client.get("/api/v1/admin/tickets/stats", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["by_status"] == {"open": 1, "in_progress": 0, "resolved": 1, "closed": 1}
        assert data["by_priority"]["high"] == 1
        assert data["by_priority"]["normal"] == 2
        assert data["by_category"]["billing"] == 2
        assert data["avg_resolution_hours"] == 3.0

    async def test_empty(self, client: AsyncClient, admin_headers: dict):
        response = await client.get("/api/v1/admin/tickets/stats", headers=admin_headers)
        assert response.json()["total"] == 0
        assert response.json()["avg_resolution_hours"] is None


async def test_reply_model_defaults(db_session: AsyncSession, test_user: User):
    ticket = Ticket(user_id=test_user.id, subject="Subject", description="d" * 20, category="other")
    db_session.add(ticket)
    await db_session.flush()
    reply = TicketReply(ticket_id=ticket.id, user_id=test_user.id, message="hi")
    db_session.add(reply)
    await db_session.flush()
    assert reply.is_internal is False
    assert reply.created_at is not None
