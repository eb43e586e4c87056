import json
from enum import Enum
from pathlib import Path
from typing import Any, Callable
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from activitylog.db.session import SessionLocal, configure_database, create_tables
from activitylog.services.llm import LLMRequestError, get_llm_client, parse_llm_json


class FakeScenario(str, Enum):
    SPORT_CATEGORY_ONLY = "SPORT_CATEGORY_ONLY"
    SPECIFIC_EXERCISE = "SPECIFIC_EXERCISE"
    UNKNOWN_LOW = "UNKNOWN_LOW"
    MISSING_UNIT = "MISSING_UNIT"
    MODERATE_COMPLETE = "MODERATE_COMPLETE"
    FOOD_WITH_QUESTIONS = "FOOD_WITH_QUESTIONS"
    MALFORMED_JSON = "MALFORMED_JSON"
    TIMEOUT = "TIMEOUT"
    UNAVAILABLE = "UNAVAILABLE"


class FakeLLMClient:
    def __init__(self, scenario: FakeScenario) -> None:
        self.scenario = scenario
        self.calls: list[dict[str, Any]] = []

    def generate_json(
        self,
        prompt: str,
        task_type: str = "classification",
        system_instruction: str = "",
    ) -> dict:
        _ = system_instruction
        try:
            prompt_obj = json.loads(prompt) if isinstance(prompt, str) else {}
        except Exception:
            prompt_obj = {}
        self.calls.append({"task_type": task_type, "prompt": prompt_obj})

        if self.scenario == FakeScenario.SPORT_CATEGORY_ONLY:
            return {"kind": "sport", "confidence": 85, "fields": {"activity": "sport", "duration": 120}}
        if self.scenario == FakeScenario.SPECIFIC_EXERCISE:
            return {"kind": "strength", "confidence": 0.9, "fields": {"activity": "deadlift", "duration": 30}}
        if self.scenario == FakeScenario.UNKNOWN_LOW:
            return {"kind": "unknown", "confidence": 12, "fields": {}}
        if self.scenario == FakeScenario.MISSING_UNIT:
            return {"kind": "weight", "confidence": 65, "fields": {"weight": 180}}
        if self.scenario == FakeScenario.MODERATE_COMPLETE:
            return {"kind": "hydration", "confidence": 60, "fields": {"amount": 2, "unit": "liter"}}
        if self.scenario == FakeScenario.FOOD_WITH_QUESTIONS:
            return {
                "kind": "nutrition",
                "confidence": 70,
                "fields": {"foods": ["Oatmeal", "Blueberries"]},
                "questions": [
                    {
                        "id": "meal",
                        "question": "Which meal was this?",
                        "type": "select",
                        "options": ["breakfast", "lunch", "dinner", "snack"],
                    },
                    {"id": "broken", "type": "select", "options": []},
                ],
            }
        if self.scenario == FakeScenario.MALFORMED_JSON:
            return parse_llm_json('{"kind": "food",')
        if self.scenario == FakeScenario.TIMEOUT:
            raise TimeoutError("simulated timeout")
        if self.scenario == FakeScenario.UNAVAILABLE:
            raise LLMRequestError(provider="openai", model="gpt-4.1-mini", message="simulated outage", status_code=503)
        raise ValueError("Unknown fake scenario")


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    db_path = tmp_path_factory.mktemp("db") / "activitylog_test.db"
    configure_database(str(db_path))
    create_tables()
    return db_path


@pytest.fixture(scope="session")
def app(test_db_path: Path):
    from activitylog.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def client(app):
    app.dependency_overrides = {}
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def db_session(test_db_path: Path):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def user_id() -> str:
    return f"user_{uuid4().hex[:10]}"


@pytest.fixture
def fake_llm_factory() -> Callable[[FakeScenario], FakeLLMClient]:
    def _factory(scenario: FakeScenario) -> FakeLLMClient:
        return FakeLLMClient(scenario=scenario)

    return _factory


@pytest.fixture
def override_llm(app, fake_llm_factory):
    def _override(scenario: FakeScenario) -> FakeLLMClient:
        fake = fake_llm_factory(scenario)
        app.dependency_overrides[get_llm_client] = lambda: fake
        return fake

    return _override
