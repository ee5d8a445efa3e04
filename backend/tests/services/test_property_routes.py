"""Properties Routes — admin writes, shared reads, immutable token supply."""

ADMIN = {"Authorization": "Bearer token-admin"}
INVESTOR = {"Authorization": "Bearer token-a"}

NEW_LISTING = {
    "title": "  Canal House  ",
    "totalTokens": 500,
    "tokenPrice": 20,
    "minimumInvestment": 100,
    "status": "ACTIVE",
}


async def test_admin_creates_listing(client, seed_users):
    res = await client.post("/api/v1/properties", json=NEW_LISTING, headers=ADMIN)
    assert res.status_code == 201
    body = res.json()
    assert body["id"].startswith("prop_")
    assert body["title"] == "Canal House"
    assert body["availableTokens"] == body["totalTokens"] == 500
    assert body["price"] == 10000.0
    assert body["ownerId"] == "usr_admin"


async def test_investor_cannot_create(client, seed_users):
    res = await client.post("/api/v1/properties", json=NEW_LISTING, headers=INVESTOR)
    assert res.status_code == 403


async def test_blank_title_rejected(client, seed_users):
    res = await client.post(
        "/api/v1/properties", json={**NEW_LISTING, "title": "   "}, headers=ADMIN,
    )
    assert res.status_code == 400


async def test_get_and_list(client, seed_property):
    one = await client.get("/api/v1/properties/prop_1", headers=INVESTOR)
    assert one.status_code == 200
    assert one.json()["fundingProgress"] == 0

    listing = (await client.get(
        "/api/v1/properties", params={"status": "ACTIVE"}, headers=INVESTOR,
    )).json()
    assert [p["id"] for p in listing["properties"]] == ["prop_1"]
    assert listing["pagination"]["total"] == 1


async def test_unknown_property_is_404(client, seed_property):
    res = await client.get("/api/v1/properties/prop_nope", headers=INVESTOR)
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "RESOURCE_NOT_FOUND"


async def test_patch_updates_price(client, seed_property):
    res = await client.patch(
        "/api/v1/properties/prop_1", json={"tokenPrice": 1.25}, headers=ADMIN,
    )
    assert res.status_code == 200
    assert res.json()["tokenPrice"] == 1.25
    assert res.json()["availableTokens"] == 1000


async def test_patch_cannot_touch_token_supply(client, seed_property):
    res = await client.patch(
        "/api/v1/properties/prop_1", json={"totalTokens": 5}, headers=ADMIN,
    )
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "VALIDATION_FAILED"


async def test_patch_requires_admin(client, seed_property):
    res = await client.patch(
        "/api/v1/properties/prop_1", json={"title": "Mine now"}, headers=INVESTOR,
    )
    assert res.status_code == 403
