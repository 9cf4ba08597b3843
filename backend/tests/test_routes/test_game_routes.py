"""Integration tests for game, claim and settlement route handlers.

Tests the full HTTP stack using HTTPX AsyncClient with the FastAPI app
and mongomock-motor (no real MongoDB required).
"""

from datetime import timedelta

import pytest

from squares.models.common import utc_now

ADMIN = {"X-Admin-Id": "admin1"}


def _game_body(**overrides) -> dict:
    body = {
        "home_team": "Chiefs",
        "away_team": "Eagles",
        "starts_at": (utc_now() + timedelta(days=1)).isoformat(),
        "entry_fee": 10,
        "payouts": [100, 200, 100, 400],
    }
    body.update(overrides)
    return body


async def _fund(client, user_id: str, amount: int) -> None:
    response = await client.post(
        f"/api/users/{user_id}/purchases",
        json={"amount": amount, "payment_method": "cashapp"},
    )
    assert response.status_code == 201


@pytest.mark.asyncio
class TestCreateGame:

    async def test_create_game(self, client):
        response = await client.post("/api/games", json=_game_body())

        assert response.status_code == 201
        data = response.json()
        assert data["id"]
        assert data["name"] == "Eagles @ Chiefs"
        assert data["numbers_assigned"] is False
        assert data["scores"] == [None, None, None, None]

        grid = await client.get(f"/api/games/{data['id']}/grid")
        assert grid.status_code == 200
        cells = grid.json()["grid"]
        assert len(cells) == 10
        assert all(cell is None for row in cells for cell in row)

    async def test_create_with_percentages(self, client):
        body = _game_body(payouts=None, payout_percentages=[20, 20, 20, 40])
        response = await client.post("/api/games", json=body)
        assert response.status_code == 201
        assert response.json()["payouts"] == [180, 180, 180, 360]

    async def test_percentages_must_total_100(self, client):
        body = _game_body(payouts=None, payout_percentages=[20, 20, 20, 20])
        response = await client.post("/api/games", json=body)
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    async def test_wrong_number_of_payouts(self, client):
        response = await client.post("/api/games", json=_game_body(payouts=[100, 200]))
        assert response.status_code == 422

    async def test_negative_fee(self, client):
        response = await client.post("/api/games", json=_game_body(entry_fee=-1))
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"
        assert "entry_fee" in response.json()["detail"]

    async def test_list_and_get(self, client):
        created = (await client.post("/api/games", json=_game_body())).json()

        listing = await client.get("/api/games")
        assert listing.status_code == 200
        assert listing.json()["total_count"] == 1

        detail = await client.get(f"/api/games/{created['id']}")
        assert detail.status_code == 200
        assert detail.json()["home_team"] == "Chiefs"

    async def test_unknown_game(self, client):
        response = await client.get("/api/games/507f1f77bcf86cd799439011")
        assert response.status_code == 404
        assert response.json() == {"error": "NotFound", "detail": "Game not found"}


@pytest.mark.asyncio
class TestClaimRoutes:

    async def test_claim_flow(self, client):
        game = (await client.post("/api/games", json=_game_body())).json()
        await _fund(client, "alice", 50)

        response = await client.post(
            f"/api/games/{game['id']}/boxes/claim",
            json={"user_id": "alice", "row": 3, "col": 7},
        )

        assert response.status_code == 201
        assert response.json()["amount_charged"] == 10
        balance = await client.get("/api/users/alice/balance")
        assert balance.json() == {"user_id": "alice", "balance": 40}

        grid = (await client.get(f"/api/games/{game['id']}/grid")).json()["grid"]
        assert grid[3][7] == "alice"

        summary = (await client.get(f"/api/games/{game['id']}/summary")).json()
        assert summary["boxes_sold"] == 1

    async def test_already_owned(self, client):
        game = (await client.post("/api/games", json=_game_body())).json()
        await _fund(client, "alice", 50)
        await _fund(client, "bob", 50)
        url = f"/api/games/{game['id']}/boxes/claim"
        await client.post(url, json={"user_id": "alice", "row": 3, "col": 7})

        response = await client.post(url, json={"user_id": "bob", "row": 3, "col": 7})

        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyOwned"

    async def test_insufficient_funds(self, client):
        game = (await client.post("/api/games", json=_game_body())).json()
        response = await client.post(
            f"/api/games/{game['id']}/boxes/claim",
            json={"user_id": "alice", "row": 0, "col": 0},
        )
        assert response.status_code == 402
        assert response.json()["error"] == "InsufficientFunds"

    async def test_free_game_limit(self, client):
        game = (await client.post("/api/games", json=_game_body(entry_fee=0, payouts=[10, 20, 30, 40]))).json()
        url = f"/api/games/{game['id']}/boxes/claim"
        for col in range(2):
            assert (await client.post(url, json={"user_id": "alice", "row": 0, "col": col})).status_code == 201

        response = await client.post(url, json={"user_id": "alice", "row": 0, "col": 2})

        assert response.status_code == 409
        assert response.json()["error"] == "LimitExceeded"

    async def test_out_of_grid(self, client):
        game = (await client.post("/api/games", json=_game_body())).json()
        response = await client.post(
            f"/api/games/{game['id']}/boxes/claim",
            json={"user_id": "alice", "row": 10, "col": 0},
        )
        assert response.status_code == 422

    async def test_reverse_claim(self, client):
        game = (await client.post("/api/games", json=_game_body())).json()
        await _fund(client, "alice", 50)
        await client.post(
            f"/api/games/{game['id']}/boxes/claim",
            json={"user_id": "alice", "row": 1, "col": 1},
        )

        response = await client.post(f"/api/games/{game['id']}/boxes/1/1/reverse", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["refund_entry_id"]
        balance = await client.get("/api/users/alice/balance")
        assert balance.json()["balance"] == 50

    async def test_admin_header_required(self, client):
        game = (await client.post("/api/games", json=_game_body())).json()
        response = await client.post(f"/api/games/{game['id']}/numbers")
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    async def test_malformed_claim_body(self, client):
        game = (await client.post("/api/games", json=_game_body())).json()
        response = await client.post(
            f"/api/games/{game['id']}/boxes/claim",
            json={"row": 1, "col": 1},
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "ValidationError"
        assert "user_id" in body["detail"]


@pytest.mark.asyncio
class TestNumbersAndSettlement:

    async def test_numbers_too_early(self, client):
        game = (await client.post("/api/games", json=_game_body())).json()
        response = await client.post(f"/api/games/{game['id']}/numbers", headers=ADMIN)
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidState"

    async def test_full_settlement(self, client):
        starts_at = (utc_now() + timedelta(minutes=5)).isoformat()
        game = (await client.post("/api/games", json=_game_body(starts_at=starts_at))).json()
        game_id = game["id"]
        await _fund(client, "alice", 50)
        await client.post(
            f"/api/games/{game_id}/boxes/claim",
            json={"user_id": "alice", "row": 2, "col": 5},
        )

        numbers = await client.post(f"/api/games/{game_id}/numbers", headers=ADMIN)
        assert numbers.status_code == 200
        home = numbers.json()["home_numbers"]
        away = numbers.json()["away_numbers"]

        again = await client.post(f"/api/games/{game_id}/numbers", headers=ADMIN)
        assert again.status_code == 409
        assert again.json()["error"] == "AlreadyAssigned"

        # Scores whose last digits land on alice's box
        scores = {"checkpoint": 0, "home_score": 10 + home[5], "away_score": away[2]}
        recorded = await client.post(f"/api/games/{game_id}/scores", json=scores, headers=ADMIN)
        assert recorded.status_code == 200
        winner = recorded.json()["winners"][0]
        assert (winner["row"], winner["col"]) == (2, 5)
        assert winner["user_id"] == "alice"
        assert winner["label"] == "1st Quarter"

        payouts = await client.post(f"/api/games/{game_id}/payouts", headers=ADMIN)
        assert payouts.status_code == 200
        assert payouts.json()["total_issued"] == 100

        repeat = await client.post(f"/api/games/{game_id}/payouts", headers=ADMIN)
        assert repeat.json()["total_issued"] == 0
        assert repeat.json()["payouts"][0]["newly_issued"] is False

        balance = await client.get("/api/users/alice/balance")
        assert balance.json()["balance"] == 140

        winners = await client.get(f"/api/games/{game_id}/winners")
        assert len(winners.json()["winners"]) == 1

    async def test_payouts_before_numbers(self, client):
        game = (await client.post("/api/games", json=_game_body())).json()
        response = await client.post(f"/api/games/{game['id']}/payouts", headers=ADMIN)
        assert response.status_code == 409

    async def test_deactivate_blocks_claims(self, client):
        game = (await client.post("/api/games", json=_game_body())).json()
        await _fund(client, "alice", 50)

        response = await client.post(
            f"/api/games/{game['id']}/active", json={"is_active": False}, headers=ADMIN
        )
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        claim = await client.post(
            f"/api/games/{game['id']}/boxes/claim",
            json={"user_id": "alice", "row": 0, "col": 0},
        )
        assert claim.status_code == 409
        assert claim.json()["error"] == "InvalidState"
