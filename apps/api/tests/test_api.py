from charforge.modules.characters.systems import GameSystem

from conftest import make_sheet


def test_health_contract_keys(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    for k in ["status", "version", "db", "storage", "provider", "last_error_summary"]:
        assert k in body
    assert body["provider"]["name"] == "mock"
    assert r.headers.get("X-Request-Id")


def test_request_id_is_echoed(client):
    r = client.get("/systems", headers={"X-Request-Id": "REQ-123"})
    assert r.headers["X-Request-Id"] == "REQ-123"
    assert [s["id"] for s in r.json()] == ["dnd5e", "pf2e", "blades"]


def test_system_schema_route(client):
    r = client.get("/systems/pf2e/schema")
    assert r.status_code == 200
    assert r.json()["name"] == "Pathfinder 2nd Edition"
    assert "ancestry" in r.json()["contract"]["properties"]


def test_generate_then_read_back(client, mock_provider):
    r = client.post("/characters/generate", json={"system": "dnd5e", "prompt": "a brave knight"})
    assert r.status_code == 200, r.text
    created = r.json()["character"]
    assert created["system"] == "dnd5e"
    assert created["is_npc"] is False
    assert created["character"]["name"] == "Mock A Brave Knight"
    assert "class" in created["character"]
    assert len(mock_provider.calls) == 1

    got = client.get(f"/characters/{created['id']}").json()
    assert got["id"] == created["id"]
    assert got["summary"]

    listing = client.get("/characters", params={"q": "BRAVE"}).json()
    assert [i["id"] for i in listing["items"]] == [created["id"]]
    assert listing["page"]["total"] == 1
    assert client.get("/characters/count").json() == {"count": 1}


def test_generate_with_npcs(client):
    r = client.post(
        "/characters/generate",
        json={"system": "blades", "prompt": "a lurk", "include_npcs": True, "npc_count": 2},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert len(body["npcs"]) == 2
    assert all(n["is_npc"] for n in body["npcs"])
    npcs = client.get("/characters", params={"is_npc": "true"}).json()
    assert npcs["page"]["total"] == 2
    assert client.get("/characters/first_non_npc").json()["id"] == body["character"]["id"]


def test_empty_prompt_uses_error_envelope(client, mock_provider):
    r = client.post("/characters/generate", json={"system": "dnd5e", "prompt": ""}, headers={"X-Request-Id": "R1"})
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "validation_error"
    assert body["request_id"] == "R1"
    assert set(body) == {"error", "message", "request_id", "details"}
    assert mock_provider.calls == []


def test_npc_count_above_limit_is_rejected(client):
    r = client.post("/characters/generate", json={"system": "dnd5e", "prompt": "x", "include_npcs": True, "npc_count": 5})
    assert r.status_code == 422
    assert r.json()["error"] == "validation_error"


def test_missing_character_is_404(client):
    r = client.get("/characters/01HNOTHERE")
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"
    assert client.delete("/characters/01HNOTHERE").status_code == 404
    assert client.get("/characters/first_non_npc").status_code == 404


def test_patch_and_delete(client, store):
    rec = store.create(GameSystem.PF2E, "old", make_sheet(GameSystem.PF2E))
    r = client.patch(f"/characters/{rec.id}", json={"prompt": "new", "is_npc": True})
    assert r.status_code == 200
    assert r.json()["prompt"] == "new"
    assert r.json()["updated_at"] > rec.updated_at

    bad = client.patch(f"/characters/{rec.id}", json={"character": {"name": "only a name"}})
    assert bad.status_code == 400

    assert client.delete(f"/characters/{rec.id}").json() == {"id": rec.id, "deleted": True}
    assert client.get(f"/characters/{rec.id}").status_code == 404


def test_export_download(client, store):
    rec = store.create(GameSystem.BLADES, "p", make_sheet(GameSystem.BLADES, name="Shade Vell"))
    r = client.get(f"/characters/{rec.id}/export")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/markdown")
    assert 'filename="shade_vell.md"' in r.headers["content-disposition"]
    assert r.text.startswith("---\n")
    assert "# Shade Vell" in r.text


def test_npc_for_existing_character(client, store):
    parent = store.create(GameSystem.DND5E, "p", make_sheet(GameSystem.DND5E))
    r = client.post(f"/characters/{parent.id}/npcs", json={"relationship": "a sibling"})
    assert r.status_code == 200, r.text
    assert r.json()["is_npc"] is True
    assert "a sibling" in r.json()["prompt"]


def test_suggestions_and_cache_clear(client):
    r = client.get("/systems/dnd5e/suggestions")
    assert r.status_code == 200
    assert r.json()["system"] == "dnd5e"
    assert isinstance(r.json()["suggestions"], list)
    client.post("/characters/generate", json={"system": "dnd5e", "prompt": "a knight"})
    assert client.delete("/generation/cache").json()["cleared"] >= 1


def test_portrait_route(client, store):
    rec = store.create(GameSystem.DND5E, "p", make_sheet(GameSystem.DND5E))
    assert client.get(f"/characters/{rec.id}/portrait").status_code == 404

    ref = client.app.state.portraits.save(b"\xff\xd8img")
    store.update(rec.id, {"portrait_ref": ref})
    r = client.get(f"/characters/{rec.id}/portrait")
    assert r.status_code == 200
    assert r.content == b"\xff\xd8img"


def test_backup_routes(client, store):
    rec = store.create(GameSystem.DND5E, "p", make_sheet(GameSystem.DND5E))
    created = client.post("/backups", json={"note": "nightly"})
    assert created.status_code == 200, created.text
    backup_id = created.json()["backup_id"]
    assert client.get(f"/backups/{backup_id}").json()["note"] == "nightly"
    assert client.get("/backups/validate").json()["valid"] is True

    assert client.post("/backups/reset", json={}).status_code == 400
    assert client.post("/backups/reset", json={"confirm": True}).json() == {"cleared": 1}

    restored = client.post(f"/backups/{backup_id}/restore")
    assert restored.json()["restored"] == 1
    assert client.get(f"/characters/{rec.id}").status_code == 200
    assert client.get("/backups/NOPE").status_code == 404


def test_list_accepts_mixed_timezone_bounds(client, store):
    rec = store.create(GameSystem.DND5E, "p", make_sheet(GameSystem.DND5E))
    r = client.get("/characters", params={"start": "2020-01-01T00:00:00Z", "end": "2030-01-01T00:00:00"})
    assert r.status_code == 200, r.text
    assert [i["id"] for i in r.json()["items"]] == [rec.id]


def test_patch_rejects_portrait_ref_outside_storage(client, store):
    rec = store.create(GameSystem.DND5E, "p", make_sheet(GameSystem.DND5E))
    for ref in ["storage://../storage_secret/key.txt", "file:///etc/passwd"]:
        r = client.patch(f"/characters/{rec.id}", json={"portrait_ref": ref})
        assert r.status_code == 422
        assert r.json()["error"] == "validation_error"
    assert store.require(rec.id).portrait_ref is None


def test_npc_for_missing_parent_is_404(client):
    r = client.post("/characters/01HNOTHERE/npcs", json={"relationship": "a sibling"})
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"
