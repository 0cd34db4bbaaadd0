"""Tests for the LINE and Facebook channel providers."""

import json
from types import SimpleNamespace

import httpx
import pytest

from api.channels import FacebookChannel, LineChannel, build_channel_providers
from api.channels.base import ChannelMessage, EventType

from conftest import (
    FACEBOOK_PAGE_ID,
    FACEBOOK_SECRET,
    LINE_BOT_ID,
    LINE_SECRET,
    PlatformRecorder,
    facebook_body,
    facebook_text,
    line_body,
    line_text_event,
    sign_facebook,
    sign_line,
)


def _credentials(platform, token="token"):
    return SimpleNamespace(platform=platform, platform_account_id="acct", access_token=token, channel_secret="s")


# ── LINE ──────────────────────────────────────────────

class TestLineNormalize:
    def setup_method(self):
        self.line = LineChannel()

    def test_text_event(self):
        body = json.loads(line_body(line_text_event(user_id="U1", text="hello")))
        assert self.line.destinations(body) == [LINE_BOT_ID]
        events = self.line.normalize(body, LINE_BOT_ID)
        assert len(events) == 1
        assert events[0].platform == "line"
        assert events[0].platform_user_id == "U1"
        assert events[0].type == EventType.TEXT
        assert events[0].content == "hello"

    def test_image_and_sticker_use_placeholders(self):
        image = line_text_event(message_id="img-1")
        image["message"] = {"type": "image", "id": "img-1", "contentProvider": {"type": "line"}}
        sticker = line_text_event(message_id="st-1")
        sticker["message"] = {"type": "sticker", "id": "st-1", "packageId": "1", "stickerId": "13"}
        events = self.line.normalize(json.loads(line_body(image, sticker)), LINE_BOT_ID)

        assert [e.type for e in events] == [EventType.IMAGE, EventType.STICKER]
        assert events[0].content == "[image]"
        assert events[0].image_url.endswith("/message/img-1/content")
        assert events[1].content == "[sticker]"
        assert events[1].sticker_id == "13"

    def test_non_message_events_skipped(self):
        follow = {"type": "follow", "source": {"type": "user", "userId": "U1"}}
        video = line_text_event()
        video["message"] = {"type": "video", "id": "v1"}
        events = self.line.normalize(json.loads(line_body(follow, video)), LINE_BOT_ID)
        assert events == []

    def test_missing_destination(self):
        assert self.line.destinations({"events": []}) == []


class TestLineSignature:
    def test_valid_signature(self):
        body = line_body(line_text_event())
        assert LineChannel().verify_signature(body, sign_line(body), LINE_SECRET)

    def test_tampered_body_rejected(self):
        body = line_body(line_text_event())
        signature = sign_line(body)
        assert not LineChannel().verify_signature(body + b" ", signature, LINE_SECRET)

    def test_missing_signature_or_secret_rejected(self):
        body = line_body(line_text_event())
        assert not LineChannel().verify_signature(body, None, LINE_SECRET)
        assert not LineChannel().verify_signature(body, sign_line(body), None)


# ── Facebook ──────────────────────────────────────────

class TestFacebookNormalize:
    def setup_method(self):
        self.fb = FacebookChannel()

    def test_text_event(self):
        body = json.loads(facebook_body(facebook_text(sender="PSID-9", text="hi")))
        assert self.fb.destinations(body) == [FACEBOOK_PAGE_ID]
        events = self.fb.normalize(body, FACEBOOK_PAGE_ID)
        assert len(events) == 1
        assert events[0].platform_user_id == "PSID-9"
        assert events[0].text == "hi"

    def test_echo_and_unmatched_page_dropped(self):
        echo = facebook_text()
        echo["message"]["is_echo"] = True
        body = json.loads(facebook_body(echo))
        body["entry"].append({"id": "999", "messaging": [facebook_text(sender="other")]})
        assert self.fb.normalize(body, FACEBOOK_PAGE_ID) == []

    def test_attachments(self):
        image = facebook_text()
        image["message"] = {"mid": "m2", "attachments": [{"type": "image", "payload": {"url": "https://x/y.jpg"}}]}
        sticker = facebook_text()
        sticker["message"] = {
            "mid": "m3",
            "sticker_id": 369239263222822,
            "attachments": [{"type": "image", "payload": {"url": "https://x/like.png"}}],
        }
        audio = facebook_text()
        audio["message"] = {"mid": "m4", "attachments": [{"type": "audio", "payload": {"url": "https://x/a.mp4"}}]}

        events = self.fb.normalize(json.loads(facebook_body(image, sticker, audio)), FACEBOOK_PAGE_ID)
        assert [e.type for e in events] == [EventType.IMAGE, EventType.STICKER]
        assert events[0].image_url == "https://x/y.jpg"
        assert events[1].content == "[sticker]"

    def test_batched_pages_are_separate_destinations(self):
        body = json.loads(facebook_body(facebook_text(sender="PSID-a")))
        body["entry"].append({"id": "999", "messaging": [facebook_text(sender="PSID-b", mid="mid.2")]})
        body["entry"].append({"id": FACEBOOK_PAGE_ID, "messaging": [facebook_text(sender="PSID-c", mid="mid.3")]})

        assert self.fb.destinations(body) == [FACEBOOK_PAGE_ID, "999"]
        assert [e.platform_user_id for e in self.fb.normalize(body, FACEBOOK_PAGE_ID)] == ["PSID-a", "PSID-c"]
        assert [e.platform_user_id for e in self.fb.normalize(body, "999")] == ["PSID-b"]

    def test_non_page_object_has_no_destination(self):
        assert self.fb.destinations({"object": "instagram", "entry": [{"id": "1"}]}) == []

    def test_signature(self):
        body = facebook_body(facebook_text())
        assert self.fb.verify_signature(body, sign_facebook(body), FACEBOOK_SECRET)
        assert not self.fb.verify_signature(body, sign_facebook(body, "wrong"), FACEBOOK_SECRET)
        assert not self.fb.verify_signature(body, sign_line(body, FACEBOOK_SECRET), FACEBOOK_SECRET)


# ── Outbound ──────────────────────────────────────────

@pytest.mark.asyncio
async def test_line_push_and_profile():
    recorder = PlatformRecorder()
    line = build_channel_providers(transport=httpx.MockTransport(recorder.handler))["line"]

    response = await line.send_message(_credentials("line", "tok"), ChannelMessage(to="U1", content="x" * 6000))
    assert response.success
    request = recorder.sends[0]
    assert request.url.path == "/v2/bot/message/push"
    assert request.headers["Authorization"] == "Bearer tok"
    payload = json.loads(request.content)
    assert payload["to"] == "U1"
    assert len(payload["messages"][0]["text"]) == LineChannel.MAX_TEXT_LENGTH

    profile = await line.get_profile(_credentials("line"), "U1")
    assert profile.display_name == "Nok"


@pytest.mark.asyncio
async def test_facebook_send_uses_page_token():
    recorder = PlatformRecorder()
    fb = build_channel_providers(facebook_graph_version="v19.0", transport=httpx.MockTransport(recorder.handler))["facebook"]

    response = await fb.send_message(_credentials("facebook", "page-tok"), ChannelMessage(to="PSID-1", content="hi"))
    assert response.success
    assert response.message_id == "mid.out"
    request = recorder.sends[0]
    assert request.url.path == "/v19.0/me/messages"
    assert request.url.params["access_token"] == "page-tok"
    assert json.loads(request.content)["recipient"] == {"id": "PSID-1"}

    profile = await fb.get_profile(_credentials("facebook"), "PSID-1")
    assert profile.display_name == "Malee S."


@pytest.mark.asyncio
async def test_failed_send_reports_error():
    recorder = PlatformRecorder()
    recorder.fail_sends = 1
    line = LineChannel(transport=httpx.MockTransport(recorder.handler))
    response = await line.send_message(_credentials("line"), ChannelMessage(to="U1", content="hi"))
    assert not response.success
    assert response.error
