"""Shared fixtures for Clinic Inbox tests."""

import asyncio
import base64
import hashlib
import hmac
import json
import os
from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

# Ensure we use test/mock settings
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from api.channels import build_channel_providers
from api.main import create_app
from api.services import Services
from config.settings import Settings
from database.repositories import ChannelRepository, KnowledgeRepository, SettingsRepository
from retrieval.pinecone_client import SearchResult

LINE_BOT_ID = "U-bot-0001"
LINE_SECRET = "line-secret"
FACEBOOK_PAGE_ID = "1029384756"
FACEBOOK_SECRET = "fb-app-secret"


# ── Fakes ─────────────────────────────────────────────

class FakeEmbeddingService:
    """Returns a fixed vector; counts calls."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def embed_text(self, text):
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding backend down")
        return [0.1] * 8

    def get_dimension(self):
        return 8


class FakeVectorIndex:
    """In-memory index; scores per id are set by the test."""

    def __init__(self):
        self.vectors = {}
        self.scores = {}
        self.default_score = 0.0
        self.fail_query = False
        self.fail_upsert = False
        self.queries = []

    def upsert_single(self, id, embedding, metadata):
        if self.fail_upsert:
            return False
        self.vectors[id] = (embedding, metadata)
        return True

    def query(self, embedding, top_k=5, filter=None, min_score=0.0):
        self.queries.append({"top_k": top_k, "min_score": min_score})
        if self.fail_query:
            raise RuntimeError("index unreachable")
        hits = [
            SearchResult(id=vid, score=self.scores.get(vid, self.default_score))
            for vid in self.vectors
        ]
        hits = [h for h in hits if h.score >= min_score]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]

    def delete(self, ids):
        for vid in ids:
            self.vectors.pop(vid, None)
        return True


class FakeLLMProvider:
    """Records prompts and returns a canned reply, or raises."""

    def __init__(self, reply="สวัสดีค่ะ โบท็อกซ์ราคา 3,900 บาทค่ะ"):
        self.reply = reply
        self.error = None
        self.delay = 0.0
        self.calls = []

    async def agenerate(self, prompt, system=None, model_id=None):
        self.calls.append({"prompt": prompt, "system": system, "model_id": model_id})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


class PlatformRecorder:
    """httpx mock transport handler standing in for LINE and Graph APIs."""

    def __init__(self):
        self.requests = []
        self.fail_sends = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            if self.fail_sends:
                self.fail_sends -= 1
                return httpx.Response(500, json={"error": "upstream error"})
            return httpx.Response(
                200, json={"message_id": "mid.out"}, headers={"x-line-request-id": "req-1"}
            )
        if request.url.host == "graph.facebook.com":
            return httpx.Response(
                200, json={"first_name": "Malee", "last_name": "S.", "profile_pic": "https://cdn.example/p.jpg"}
            )
        return httpx.Response(200, json={"displayName": "Nok", "pictureUrl": "https://cdn.example/n.jpg"})

    @property
    def sends(self):
        return [r for r in self.requests if r.method == "POST"]

    def sent_texts(self):
        texts = []
        for r in self.sends:
            body = json.loads(r.content)
            if "messages" in body:
                texts.append(body["messages"][0]["text"])
            else:
                texts.append(body["message"]["text"])
        return texts


# ── Payload helpers ───────────────────────────────────

def line_text_event(user_id="U-user-1", text="โบท็อกซ์ราคาเท่าไหร่คะ", message_id="m-1"):
    return {
        "type": "message",
        "timestamp": 1700000000000,
        "source": {"type": "user", "userId": user_id},
        "replyToken": "r-token",
        "message": {"type": "text", "id": message_id, "text": text},
    }


def line_body(*events, destination=LINE_BOT_ID) -> bytes:
    return json.dumps({"destination": destination, "events": list(events)}).encode("utf-8")


def facebook_body(*messaging, page_id=FACEBOOK_PAGE_ID) -> bytes:
    return json.dumps({
        "object": "page",
        "entry": [{"id": page_id, "time": 1700000000000, "messaging": list(messaging)}],
    }).encode("utf-8")


def facebook_text(sender="PSID-1", text="Do you have filler promotions?", mid="mid.1"):
    return {
        "sender": {"id": sender},
        "recipient": {"id": FACEBOOK_PAGE_ID},
        "timestamp": 1700000000000,
        "message": {"mid": mid, "text": text},
    }


def sign_line(body: bytes, secret=LINE_SECRET) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def sign_facebook(body: bytes, secret=FACEBOOK_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


# ── Fixtures ──────────────────────────────────────────

@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'inbox.db'}",
        api_key=None,
        facebook_verify_token="verify-me",
        generation_timeout_seconds=2,
        retrieval_timeout_seconds=2,
        reply_workers=1,
        log_level="WARNING",
    )


@pytest.fixture
def platform():
    return PlatformRecorder()


@pytest.fixture
def fakes():
    return SimpleNamespace(
        embedding=FakeEmbeddingService(),
        index=FakeVectorIndex(),
        llm=FakeLLMProvider(),
    )


@pytest.fixture
def services(settings, fakes, platform):
    return Services(
        settings,
        embedding_service=fakes.embedding,
        vector_index=fakes.index,
        llm_provider=fakes.llm,
        channel_providers=build_channel_providers(transport=httpx.MockTransport(platform.handler)),
        use_reply_queue=False,
    )


@pytest_asyncio.fixture
async def started(services):
    """Services with tables created, for direct pipeline tests."""
    await services.start()
    yield services
    await services.stop()


@pytest.fixture
def client(services):
    """Create a FastAPI test client."""
    with TestClient(create_app(services)) as c:
        yield c


# ── Data helpers ──────────────────────────────────────

async def connect_channel(services, platform, account_id, secret, access_token="token", name=None):
    async with services.session_factory() as session:
        async with session.begin():
            return await ChannelRepository(session).create(
                platform=platform,
                platform_account_id=account_id,
                access_token=access_token,
                channel_secret=secret,
                name=name,
            )


async def connect_channels(services):
    """Connect one LINE and one Facebook channel; returns them by platform."""
    line = await connect_channel(
        services, "line", LINE_BOT_ID, LINE_SECRET, access_token="line-token", name="Clinic LINE OA"
    )
    facebook = await connect_channel(
        services, "facebook", FACEBOOK_PAGE_ID, FACEBOOK_SECRET, access_token="page-token", name="Clinic Page"
    )
    return {"line": line, "facebook": facebook}


async def add_knowledge(services, content, category=None, score=None):
    """Store an entry and index it with a fixed similarity score."""
    entry = await services.knowledge_store.add(content, category=category)
    if score is not None:
        services.vector_index.scores[entry.id] = score
    return entry


async def put_ai_settings(services, **values):
    async with services.session_factory() as session:
        async with session.begin():
            await SettingsRepository(session).upsert(values)


async def list_knowledge_rows(services):
    async with services.session_factory() as session:
        return await KnowledgeRepository(session).list_recent(limit=100)


@pytest.fixture
def channels(client):
    """LINE and Facebook channels connected through the admin API."""
    connected = {}
    for platform, account, token, secret in (
        ("line", LINE_BOT_ID, "line-token", LINE_SECRET),
        ("facebook", FACEBOOK_PAGE_ID, "page-token", FACEBOOK_SECRET),
    ):
        resp = client.post("/api/v1/channels", json={
            "platform": platform,
            "platform_account_id": account,
            "access_token": token,
            "channel_secret": secret,
        })
        assert resp.status_code == 201
        connected[platform] = resp.json()
    return connected
