"""End-to-end participation flow through the HTTP API."""

import pytest
from httpx import AsyncClient


async def _create_challenge(client: AsyncClient, headers: dict, **overrides) -> str:
    body = {"title": "Thirty days of running", "category": "fitness", "duration_days": 30, "points_reward": 100}
    body.update(overrides)
    response = await client.post("/api/v1/challenges", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["id"]


class TestJoin:
    @pytest.mark.asyncio
    async def test_join_and_duplicate(self, client: AsyncClient, token_for):
        headers = token_for()
        cid = await _create_challenge(client, headers)

        response = await client.post(f"/api/v1/challenges/{cid}/join", headers=headers)
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "active"
        assert data["progress"] == 0.0
        assert data["check_in_streak"] == 0

        duplicate = await client.post(f"/api/v1/challenges/{cid}/join", headers=headers)
        assert duplicate.status_code == 409
        assert duplicate.json()["detail"] == "You are already participating in this challenge"

    @pytest.mark.asyncio
    async def test_join_unknown_challenge(self, client: AsyncClient, token_for):
        response = await client.post("/api/v1/challenges/424242/join", headers=token_for())
        assert response.status_code == 404
        assert response.json()["detail"] == "Challenge not found"

    @pytest.mark.asyncio
    async def test_join_requires_auth(self, client: AsyncClient, token_for):
        cid = await _create_challenge(client, token_for())
        response = await client.post(f"/api/v1/challenges/{cid}/join")
        assert response.status_code in (401, 403)


class TestCheckIn:
    @pytest.mark.asyncio
    async def test_check_in_then_same_day(self, client: AsyncClient, token_for, clock):
        """First check-in is accepted; the second on the same day is reported, not applied."""
        headers = token_for()
        cid = await _create_challenge(client, headers)
        await client.post(f"/api/v1/challenges/{cid}/join", headers=headers)

        first = await client.post(f"/api/v1/challenges/{cid}/check-in", json={"note": "5k"}, headers=headers)
        assert first.status_code == 200
        body = first.json()
        assert body["accepted"] is True
        assert body["message"] == "Checked in"
        assert body["participation"]["progress"] == 3.33
        assert body["participation"]["check_in_streak"] == 1
        assert body["participation"]["last_check_in_day"] == "2026-03-01"

        clock.advance(hours=5)
        second = await client.post(f"/api/v1/challenges/{cid}/check-in", headers=headers)
        assert second.status_code == 200
        body = second.json()
        assert body["accepted"] is False
        assert body["rejection"] == "already_checked_in_today"
        assert body["message"] == "Already checked in today"
        assert body["participation"]["check_in_count"] == 1

    @pytest.mark.asyncio
    async def test_check_in_without_joining(self, client: AsyncClient, token_for):
        headers = token_for()
        cid = await _create_challenge(client, headers)
        response = await client.post(f"/api/v1/challenges/{cid}/check-in", headers=headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_note_too_long(self, client: AsyncClient, token_for):
        headers = token_for()
        cid = await _create_challenge(client, headers)
        await client.post(f"/api/v1/challenges/{cid}/join", headers=headers)
        response = await client.post(
            f"/api/v1/challenges/{cid}/check-in", json={"note": "x" * 2001}, headers=headers
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_completion_awards_points(self, client: AsyncClient, token_for, clock):
        """Completing a two-day challenge awards its points and locks the participation."""
        headers = token_for()
        cid = await _create_challenge(client, headers, duration_days=2, points_reward=25)
        await client.post(f"/api/v1/challenges/{cid}/join", headers=headers)

        await client.post(f"/api/v1/challenges/{cid}/check-in", headers=headers)
        clock.advance(days=1)
        done = await client.post(f"/api/v1/challenges/{cid}/check-in", headers=headers)
        body = done.json()
        assert body["completed_now"] is True
        assert body["message"] == "Challenge completed"
        assert body["participation"]["status"] == "completed"
        assert body["participation"]["progress"] == 100.0
        assert body["participation"]["completed_at"] is not None

        clock.advance(days=1)
        after = await client.post(f"/api/v1/challenges/{cid}/check-in", headers=headers)
        assert after.json()["rejection"] == "already_completed"

        stats = (await client.get("/api/v1/users/me/stats", headers=headers)).json()
        assert stats["challenges_completed"] == 1
        assert stats["total_points"] == 25
        assert stats["longest_streak"] == 2

        leave = await client.delete(f"/api/v1/challenges/{cid}/participation", headers=headers)
        assert leave.status_code == 409


class TestHistory:
    @pytest.mark.asyncio
    async def test_history_orders(self, client: AsyncClient, token_for, clock):
        headers = token_for()
        cid = await _create_challenge(client, headers)
        await client.post(f"/api/v1/challenges/{cid}/join", headers=headers)
        for note in ("first", "second", "third"):
            await client.post(f"/api/v1/challenges/{cid}/check-in", json={"note": note}, headers=headers)
            clock.advance(days=1)

        asc = (await client.get(f"/api/v1/challenges/{cid}/history", headers=headers)).json()
        assert asc["order"] == "asc"
        assert asc["total"] == 3
        assert [e["note"] for e in asc["entries"]] == ["first", "second", "third"]

        desc = (await client.get(
            f"/api/v1/challenges/{cid}/history", params={"order": "desc"}, headers=headers
        )).json()
        assert [e["note"] for e in desc["entries"]] == ["third", "second", "first"]

    @pytest.mark.asyncio
    async def test_history_bad_order(self, client: AsyncClient, token_for):
        headers = token_for()
        cid = await _create_challenge(client, headers)
        await client.post(f"/api/v1/challenges/{cid}/join", headers=headers)
        response = await client.get(
            f"/api/v1/challenges/{cid}/history", params={"order": "random"}, headers=headers
        )
        assert response.status_code == 422


class TestLeave:
    @pytest.mark.asyncio
    async def test_leave_then_rejoin(self, client: AsyncClient, token_for):
        headers = token_for()
        cid = await _create_challenge(client, headers)
        await client.post(f"/api/v1/challenges/{cid}/join", headers=headers)
        await client.post(f"/api/v1/challenges/{cid}/check-in", headers=headers)

        response = await client.delete(f"/api/v1/challenges/{cid}/participation", headers=headers)
        assert response.status_code == 204

        missing = await client.get(f"/api/v1/challenges/{cid}/participation", headers=headers)
        assert missing.status_code == 404

        again = await client.delete(f"/api/v1/challenges/{cid}/participation", headers=headers)
        assert again.status_code == 404

        rejoin = await client.post(f"/api/v1/challenges/{cid}/join", headers=headers)
        assert rejoin.status_code == 201
        assert rejoin.json()["progress"] == 0.0

        challenge = (await client.get(f"/api/v1/challenges/{cid}", headers=headers)).json()
        assert challenge["participant_count"] == 1
