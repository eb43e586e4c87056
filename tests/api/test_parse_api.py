from conftest import FakeScenario

from activitylog.db.store import SqlActivityStore, StorageError


def test_health(client) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_parse_weight_commits_record(client, override_llm, user_id) -> None:
    fake = override_llm(FakeScenario.UNKNOWN_LOW)
    resp = client.post("/parse", json={"text": "weight 175", "user_id": user_id})
    assert resp.status_code == 200
    body = resp.json()
    assert body["action"] == "commit"
    assert body["result"]["kind"] == "weight"
    assert body["result"]["fields"] == {"value": 175, "unit": "lbs"}
    assert body["record_id"] > 0
    assert body["clarification"] is None
    assert body["acknowledgement"] == "Got it! Weight logged: 175 lbs."
    assert fake.calls == []

    listing = client.get("/activities", params={"user_id": user_id})
    assert listing.status_code == 200
    rows = listing.json()
    assert len(rows) == 1
    assert rows[0]["id"] == body["record_id"]
    assert rows[0]["needs_review"] is False
    assert rows[0]["matcher_used"] == "pattern"


def test_parse_run_commits(client, override_llm, user_id) -> None:
    override_llm(FakeScenario.UNKNOWN_LOW)
    resp = client.post("/parse", json={"text": "ran 5k in 25 minutes", "user_id": user_id})
    assert resp.status_code == 200
    body = resp.json()
    assert body["action"] == "commit"
    assert body["result"]["fields"] == {
        "activity": "running",
        "distance": 5,
        "distance_unit": "km",
        "duration_minutes": 25,
    }


def test_parse_gibberish_stored_with_flag(client, override_llm, user_id) -> None:
    fake = override_llm(FakeScenario.UNKNOWN_LOW)
    resp = client.post("/parse", json={"text": "asdfghjkl qwerty", "user_id": user_id})
    assert resp.status_code == 200
    body = resp.json()
    assert body["action"] == "store_with_flag"
    assert body["result"]["kind"] == "unknown"
    assert body["record_id"] > 0
    assert body["acknowledgement"] == "Saved as-is for later review."
    assert len(fake.calls) == 1

    rows = client.get("/activities", params={"user_id": user_id}).json()
    assert rows[0]["raw_text"] == "asdfghjkl qwerty"
    assert rows[0]["needs_review"] is True
    assert rows[0]["fields"] == {"text": "asdfghjkl qwerty"}


def test_parse_sport_category_stores_specific_sport(client, override_llm, user_id) -> None:
    override_llm(FakeScenario.SPORT_CATEGORY_ONLY)
    resp = client.post("/parse", json={"text": "played tennis for 2 hours", "user_id": user_id})
    assert resp.status_code == 200
    body = resp.json()
    assert body["action"] == "commit"
    assert body["result"]["sport_specific"] is True

    rows = client.get("/activities", params={"user_id": user_id}).json()
    assert rows[0]["fields"]["activity"] == "tennis"
    assert rows[0]["fields"]["duration_minutes"] == 120
    assert rows[0]["sport_specific"] is True
    assert rows[0]["matcher_used"] == "fallback"


def test_parse_classifier_outage_still_stores(client, override_llm, user_id) -> None:
    override_llm(FakeScenario.UNAVAILABLE)
    resp = client.post("/parse", json={"text": "did the thing again", "user_id": user_id})
    assert resp.status_code == 200
    assert resp.json()["action"] == "store_with_flag"
    assert resp.json()["record_id"] > 0


def test_parse_missing_field_opens_clarification(client, override_llm, user_id) -> None:
    override_llm(FakeScenario.MISSING_UNIT)
    resp = client.post("/parse", json={"text": "scale said 180 this morning", "user_id": user_id})
    assert resp.status_code == 200
    body = resp.json()
    assert body["action"] == "clarify"
    assert body["record_id"] is None
    assert body["clarification"]["status"] == "active"
    assert body["clarification"]["question"]["id"] == "unit"
    assert body["acknowledgement"] == "Was that in lbs or kg?"

    # Nothing is stored until the clarification finishes.
    assert client.get("/activities", params={"user_id": user_id}).json() == []


def test_parse_multi_splits_segments(client, override_llm, user_id) -> None:
    override_llm(FakeScenario.UNKNOWN_LOW)
    resp = client.post("/parse/multi", json={"text": "weight 175, slept 7 hours and energy 6", "user_id": user_id})
    assert resp.status_code == 200
    items = resp.json()["items"]
    assert [item["result"]["kind"] for item in items] == ["weight", "sleep", "energy"]
    assert all(item["action"] == "commit" for item in items)
    assert len(client.get("/activities", params={"user_id": user_id}).json()) == 3


def test_parse_multi_single_activity(client, override_llm, user_id) -> None:
    override_llm(FakeScenario.UNKNOWN_LOW)
    resp = client.post("/parse/multi", json={"text": "had eggs and toast for breakfast", "user_id": user_id})
    assert resp.status_code == 200
    items = resp.json()["items"]
    assert len(items) == 1
    assert items[0]["result"]["fields"] == {"meal": "breakfast", "items": ["eggs", "toast"]}


def test_parse_validation(client, user_id) -> None:
    assert client.post("/parse", json={"text": "weight 175", "user_id": ""}).status_code == 422
    assert client.post("/parse", json={"text": "weight 175", "user_id": user_id, "source": "fax"}).status_code == 422
    assert client.post("/parse", json={"text": "x" * 2001, "user_id": user_id}).status_code == 422


def test_common_phrases_track_repeated_entries(client, override_llm, user_id) -> None:
    override_llm(FakeScenario.UNKNOWN_LOW)
    for _ in range(2):
        client.post("/parse", json={"text": "Weight 175", "user_id": user_id})
    client.post("/parse", json={"text": "slept 8 hours", "user_id": user_id})
    client.post("/parse", json={"text": "asdfghjkl", "user_id": user_id})

    resp = client.get("/activities/common", params={"user_id": user_id})
    assert resp.status_code == 200
    phrases = resp.json()
    assert [p["phrase"] for p in phrases] == ["weight 175", "slept 8 hours"]
    assert phrases[0]["count"] == 2
    assert phrases[0]["kind"] == "weight"


def test_classification_cached_across_requests(client, override_llm, user_id) -> None:
    fake = override_llm(FakeScenario.SPECIFIC_EXERCISE)
    for _ in range(2):
        resp = client.post("/parse", json={"text": "pulled heavy today", "user_id": user_id})
        assert resp.status_code == 200
        assert resp.json()["result"]["fields"]["activity"] == "deadlift"
    assert len(fake.calls) == 1


def test_storage_failure_returns_503(client, override_llm, user_id, monkeypatch) -> None:
    override_llm(FakeScenario.UNKNOWN_LOW)

    def _fail(self, record):
        raise StorageError("database is locked")

    monkeypatch.setattr(SqlActivityStore, "save", _fail)
    resp = client.post("/parse", json={"text": "weight 175", "user_id": user_id})
    assert resp.status_code == 503
    assert client.get("/activities", params={"user_id": user_id}).json() == []
