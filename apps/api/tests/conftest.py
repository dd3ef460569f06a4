import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from charforge.core.db import init_db, make_engine
from charforge.core.settings import Settings
from charforge.main import create_app
from charforge.modules.characters.schemas import parse_character
from charforge.modules.characters.service import CharacterStore
from charforge.modules.characters.systems import schema_for
from charforge.modules.generation.cache import GenerationCache
from charforge.modules.generation.providers import MockProvider
from charforge.modules.generation.service import CharacterGenerator
from charforge.modules.portraits.service import PortraitService

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def sheet_data(system, prompt="brave knight", **updates):
    _name, contract = schema_for(system)
    text = asyncio.run(MockProvider().generate_json(system_instruction=None, prompt=prompt, response_schema=contract))
    data = json.loads(text)
    data.update(updates)
    return data


def make_sheet(system, **updates):
    return parse_character(system, sheet_data(system, **updates))


class FakeClock:
    def __init__(self, start=T0, step=timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self):
        cur = self.now
        self.now = self.now + self.step
        return cur


class FakeProvider:
    """Replays canned replies in order (the last one repeats); records every call."""
    name = "fake"

    def __init__(self, *replies, delay=0.0, error=None):
        self.replies = list(replies)
        self.delay = delay
        self.error = error
        self.calls = []

    async def generate_json(self, *, system_instruction, prompt, response_schema):
        self.calls.append({"system_instruction": system_instruction, "prompt": prompt, "schema": response_schema})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


def image_transport(status=200, content=b"\xff\xd8fakejpeg", content_type="image/jpeg"):
    def handler(request):
        return httpx.Response(status, content=content, headers={"content-type": content_type})

    return httpx.MockTransport(handler)


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{(tmp_path / 'test.db').as_posix()}")
    init_db(eng)
    return eng


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(engine, clock):
    return CharacterStore(engine, clock=clock)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{(tmp_path / 'test.db').as_posix()}",
        storage_root=str(tmp_path / "storage"),
        exports_root=str(tmp_path / "exports"),
        generation_provider="mock",
    )


@pytest.fixture
def portraits(tmp_path):
    return PortraitService(storage_root=str(tmp_path / "storage"), transport=image_transport())


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def client(settings, store, mock_provider, portraits):
    generator = CharacterGenerator(mock_provider, cache=GenerationCache())
    app = create_app(settings, store=store, generator=generator, portraits=portraits)
    with TestClient(app) as c:
        yield c
