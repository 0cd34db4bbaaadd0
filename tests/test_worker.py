"""Tests for the background reply queue."""

import asyncio

import pytest

from config.settings import REPLY_JOB_MARGIN_SECONDS, Settings
from database.models import SenderType
from database.repositories import ConversationRepository
from inbox.worker import ReplyJob, ReplyQueue
from llm.prompt_templates import FALLBACK_MESSAGES, FallbackCategory

from conftest import add_knowledge, connect_channels, line_body, line_text_event, sign_line


def _job(n=0):
    return ReplyJob(
        conversation_id=f"conv-{n}",
        message_id=f"msg-{n}",
        channel_id="chan",
        platform="line",
        platform_user_id="U1",
        text="hi",
    )


@pytest.mark.asyncio
async def test_jobs_are_processed():
    handled = []

    async def handler(job):
        handled.append(job.conversation_id)

    queue = ReplyQueue(handler, workers=2)
    await queue.start()
    for n in range(5):
        await queue.enqueue(_job(n))
    await queue.join()
    await queue.stop()

    assert sorted(handled) == [f"conv-{n}" for n in range(5)]
    assert not queue.is_running


@pytest.mark.asyncio
async def test_failing_and_slow_jobs_do_not_stop_workers():
    handled = []
    recovered = []

    async def handler(job):
        if job.conversation_id == "conv-0":
            raise RuntimeError("boom")
        if job.conversation_id == "conv-1":
            await asyncio.sleep(5)
        handled.append(job.conversation_id)

    async def on_failure(job, error):
        recovered.append((job.conversation_id, type(error).__name__))

    queue = ReplyQueue(handler, workers=1, job_timeout=0.05, on_failure=on_failure)
    await queue.start()
    for n in range(3):
        await queue.enqueue(_job(n))
    await queue.join()
    await queue.stop()

    assert handled == ["conv-2"]
    assert recovered[0] == ("conv-0", "RuntimeError")
    assert recovered[1][0] == "conv-1"
    assert len(recovered) == 2


@pytest.mark.asyncio
async def test_enqueue_before_start_fails():
    async def handler(job):
        pass

    with pytest.raises(RuntimeError):
        await ReplyQueue(handler).enqueue(_job())


@pytest.mark.asyncio
async def test_webhook_returns_before_reply(started, fakes, platform):
    await connect_channels(started)
    await add_knowledge(started, "Botox 3,900 THB per area", category="injectables", score=0.9)
    queue = ReplyQueue(started.pipeline.reply, workers=1, job_timeout=5)
    started.pipeline.attach_queue(queue)
    await queue.start()
    fakes.llm.delay = 0.2

    body = line_body(line_text_event(text="botox?"))
    result = await started.pipeline.handle_webhook("line", body, {"X-Line-Signature": sign_line(body)})
    conversation_id = result.results[0].conversation_id

    assert result.results[0].reply_scheduled
    assert platform.sends == []

    await queue.join()
    await queue.stop()

    async with started.session_factory() as session:
        messages = await ConversationRepository(session).get_messages(conversation_id)
    assert [m.sender_type for m in messages] == [SenderType.USER, SenderType.AI]
    assert platform.sent_texts() == [fakes.llm.reply]


@pytest.mark.asyncio
async def test_timed_out_job_sends_fallback_and_hands_off(started, fakes, platform):
    await connect_channels(started)
    await add_knowledge(started, "Botox 3,900 THB per area", category="injectables", score=0.9)
    queue = ReplyQueue(
        started.pipeline.reply,
        workers=1,
        job_timeout=0.2,
        on_failure=started.pipeline.reply_failed,
        failure_timeout=5,
    )
    started.pipeline.attach_queue(queue)
    await queue.start()
    fakes.llm.delay = 1.0

    body = line_body(line_text_event(text="botox?"))
    result = await started.pipeline.handle_webhook("line", body, {"X-Line-Signature": sign_line(body)})
    conversation_id = result.results[0].conversation_id

    await queue.join()
    await queue.stop()

    async with started.session_factory() as session:
        repo = ConversationRepository(session)
        messages = await repo.get_messages(conversation_id)
        conversation = await repo.get_by_id(conversation_id)
    generic = FALLBACK_MESSAGES[FallbackCategory.GENERIC]
    assert [(m.sender_type, m.content) for m in messages][1:] == [(SenderType.AI, generic)]
    assert not conversation.ai_mode
    assert platform.sent_texts() == [generic]


def test_job_timeout_covers_every_external_call():
    settings = Settings(
        reply_job_timeout_seconds=30,
        retrieval_timeout_seconds=10,
        generation_timeout_seconds=25,
        delivery_timeout_seconds=10,
    )
    assert settings.reply_job_budget_seconds == 10 + 25 + 2 * 10 + REPLY_JOB_MARGIN_SECONDS

    assert Settings(reply_job_timeout_seconds=300).reply_job_budget_seconds == 300
