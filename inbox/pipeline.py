"""
Webhook ingestion pipeline.

    raw webhook
      -> channel lookup per destination account
      -> signature check against each channel's own secret
      -> normalize into InboundEvents
      -> per event: identity -> conversation -> persist user message
      -> (ai_mode on, text) enqueue ReplyJob
    ReplyJob
      -> re-check ai_mode -> generate -> persist AI message
      -> escalate if flagged -> dispatch to the platform

Events in one delivery are processed concurrently; a persistence failure
aborts only its own event.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.channels.base import ChannelProvider, EventType, InboundEvent
from api.handoff.manager import HandoffManager, HandoffTrigger
from database.models import ConnectedChannel, Message, SenderType
from database.repositories import ChannelRepository, ConversationRepository
from llm.orchestrator import EscalationReason, ResponseGenerator
from llm.prompt_templates import FALLBACK_MESSAGES, FallbackCategory

from .conversation import ConversationResolver
from .dispatcher import ReplyDispatcher
from .errors import (
    AIModeConflict,
    AuthenticationError,
    ChannelNotConfigured,
    DataStoreError,
    MalformedPayload,
    NotFound,
    UnsupportedPlatform,
)
from .identity import IdentityResolver
from .metrics import record_fallback, record_signature_failure, record_webhook_event
from .worker import ReplyJob, ReplyQueue

logger = logging.getLogger(__name__)

ESCALATION_TRIGGERS = {
    EscalationReason.KNOWLEDGE_MISSING: HandoffTrigger.KNOWLEDGE_MISSING,
    EscalationReason.UPSTREAM_FAILURE: HandoffTrigger.UPSTREAM_FAILURE,
    EscalationReason.ASSISTANT_DEFERRED: HandoffTrigger.ASSISTANT_DEFERRED,
    EscalationReason.USER_COMPLAINT: HandoffTrigger.USER_COMPLAINT,
}


@dataclass
class IngestResult:
    """What happened to one inbound event."""
    conversation_id: str
    message_id: str
    reply_scheduled: bool


@dataclass
class WebhookResult:
    """What happened to one webhook delivery."""
    platform: str
    channel_ids: List[str] = field(default_factory=list)
    received: int = 0
    persisted: int = 0
    failed: int = 0
    results: List[IngestResult] = field(default_factory=list)


class InboxPipeline:
    """Turns platform webhooks into stored messages and AI replies."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        providers: Dict[str, ChannelProvider],
        identity_resolver: IdentityResolver,
        conversation_resolver: ConversationResolver,
        generator: ResponseGenerator,
        handoff: HandoffManager,
        dispatcher: ReplyDispatcher,
        notifier=None,
    ):
        self.session_factory = session_factory
        self.providers = providers
        self.identity_resolver = identity_resolver
        self.conversation_resolver = conversation_resolver
        self.generator = generator
        self.handoff = handoff
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.reply_queue: Optional[ReplyQueue] = None

    def attach_queue(self, reply_queue: Optional[ReplyQueue]):
        """Route replies through a queue; without one they run inline."""
        self.reply_queue = reply_queue

    def get_provider(self, platform: str) -> ChannelProvider:
        provider = self.providers.get((platform or "").lower())
        if provider is None:
            raise UnsupportedPlatform(f"Unsupported platform: {platform}")
        return provider

    # ── Webhook ingestion ─────────────────────────────────────────

    async def handle_webhook(self, platform: str, raw_body: bytes, headers: Mapping[str, str]) -> WebhookResult:
        """
        Process one webhook delivery.

        A delivery may address several connected accounts (Facebook batches
        every page subscribed to the app). Each account is checked against
        its own channel secret; events for accounts that are unknown or fail
        the check are dropped while the rest are stored.

        Args:
            platform: Path segment naming the platform
            raw_body: Exact request bytes
            headers: Request headers (case-insensitive mapping)

        Returns:
            WebhookResult with per-event outcomes

        Raises:
            UnsupportedPlatform: No adapter for the platform
            MalformedPayload: Body is not JSON or names no destination
            ChannelNotConfigured: No connected channel for any destination
            AuthenticationError: No destination passed the signature check
            DataStoreError: Channel lookup failed, or every event failed to persist
        """
        provider = self.get_provider(platform)

        try:
            body = json.loads(raw_body or b"{}")
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedPayload(f"Invalid JSON body: {e}") from e
        if not isinstance(body, dict):
            raise MalformedPayload("Webhook body must be a JSON object")

        destinations = provider.destinations(body)
        if not destinations:
            raise MalformedPayload(f"No destination in {provider.platform} webhook")

        signature = headers.get(provider.signature_header)
        accepted: List[Tuple[str, ConnectedChannel]] = []
        rejected = 0
        for destination in destinations:
            channel = await self._get_channel(provider.platform, destination)
            if channel is None:
                logger.warning(f"Ignoring {provider.platform} events for unconnected account {destination}")
                continue
            if not provider.verify_signature(raw_body, signature, channel.channel_secret):
                record_signature_failure(provider.platform)
                logger.warning(f"Rejected {provider.platform} webhook for {destination}: bad signature")
                rejected += 1
                continue
            accepted.append((destination, channel))

        if not accepted:
            if rejected:
                raise AuthenticationError("Invalid signature")
            raise ChannelNotConfigured(f"No {provider.platform} channel for {', '.join(destinations)}")

        routed = [
            (event, channel)
            for destination, channel in accepted
            for event in provider.normalize(body, destination)
        ]
        result = WebhookResult(
            platform=provider.platform,
            channel_ids=[channel.id for _, channel in accepted],
            received=len(routed),
        )
        if not routed:
            return result

        outcomes = await asyncio.gather(
            *(self.ingest(event, channel) for event, channel in routed),
            return_exceptions=True,
        )

        unexpected: Optional[BaseException] = None
        for (event, _), outcome in zip(routed, outcomes):
            if isinstance(outcome, IngestResult):
                result.persisted += 1
                result.results.append(outcome)
                record_webhook_event(provider.platform, "persisted")
            elif isinstance(outcome, DataStoreError):
                result.failed += 1
                record_webhook_event(provider.platform, "failed")
                logger.error(f"Event {event.message_id} from {event.platform_user_id} not stored: {outcome}")
            else:
                result.failed += 1
                record_webhook_event(provider.platform, "failed")
                logger.error(f"Event {event.message_id} raised {outcome!r}")
                unexpected = unexpected or outcome

        if unexpected is not None:
            raise unexpected
        if result.persisted == 0:
            raise DataStoreError(f"None of {len(routed)} events could be stored")

        logger.info(
            f"{provider.platform} webhook for {', '.join(d for d, _ in accepted)}: "
            f"{result.persisted}/{result.received} events stored"
        )
        return result

    async def _get_channel(self, platform: str, account_id: str) -> Optional[ConnectedChannel]:
        try:
            async with self.session_factory() as session:
                return await ChannelRepository(session).get_by_account(platform, account_id)
        except SQLAlchemyError as e:
            raise DataStoreError(str(e)) from e

    async def ingest(self, event: InboundEvent, channel: ConnectedChannel) -> IngestResult:
        """
        Store one inbound event and schedule its reply.

        Raises:
            DataStoreError: If the event cannot be stored
        """
        provider = self.providers[event.platform]

        async def load_profile():
            return await provider.get_profile(channel, event.platform_user_id)

        identity = await self.identity_resolver.resolve(
            event.platform,
            event.platform_user_id,
            profile_hint=event.user_profile,
            profile_loader=load_profile,
        )
        conversation = await self.conversation_resolver.resolve(identity.id, channel.id)

        message = await self._store_message(
            conversation.id,
            SenderType.USER,
            event.content,
            content_type=event.type,
            raw_payload=event.raw,
        )

        reply_scheduled = False
        if conversation.ai_mode and event.type == EventType.TEXT and (event.text or "").strip():
            job = ReplyJob(
                conversation_id=conversation.id,
                message_id=message.id,
                channel_id=channel.id,
                platform=event.platform,
                platform_user_id=event.platform_user_id,
                text=event.text,
            )
            await self._schedule(job)
            reply_scheduled = True

        return IngestResult(
            conversation_id=conversation.id,
            message_id=message.id,
            reply_scheduled=reply_scheduled,
        )

    async def _schedule(self, job: ReplyJob):
        if self.reply_queue is not None and self.reply_queue.is_running:
            await self.reply_queue.enqueue(job)
            return
        try:
            await self.reply(job)
        except Exception as e:
            logger.exception(f"Inline reply for {job.conversation_id} failed: {e}")
            try:
                await self.reply_failed(job, e)
            except Exception as fallback_error:
                logger.exception(f"Fallback for {job.conversation_id} failed too: {fallback_error}")

    async def _store_message(self, conversation_id: str, sender_type: str, content: str, **kwargs) -> Message:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    message = await ConversationRepository(session).add_message(
                        conversation_id, sender_type, content, **kwargs
                    )
                conversation = await ConversationRepository(session).get_by_id(conversation_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to store {sender_type} message in {conversation_id}: {e}")
            raise DataStoreError(str(e)) from e

        await self._notify(message, conversation)
        return message

    async def _notify(self, message: Message, conversation=None):
        if self.notifier is None:
            return
        await self.notifier.message_created(message)
        if conversation is not None:
            await self.notifier.conversation_updated(conversation)

    # ── Replies ───────────────────────────────────────────────────

    async def reply(self, job: ReplyJob):
        """Generate, store, escalate and deliver the AI reply for a job."""
        if not await self.handoff.is_ai_active(job.conversation_id):
            logger.info(f"Skipping AI reply for {job.conversation_id}: staff has the conversation")
            return

        result = await self.generator.generate(
            job.conversation_id, job.text, exclude_message_ids=(job.message_id,)
        )

        # Staff may have taken over while the model was running
        if not await self.handoff.is_ai_active(job.conversation_id):
            logger.info(f"Dropping AI reply for {job.conversation_id}: staff took over during generation")
            return

        trigger = None
        if result.should_escalate:
            trigger = ESCALATION_TRIGGERS.get(result.reason, HandoffTrigger.ASSISTANT_DEFERRED)
        await self._deliver_ai_message(job, result.message, trigger)

    async def reply_failed(self, job: ReplyJob, error: BaseException):
        """
        Last-resort reply for a job that timed out or crashed.

        Sends the generic fallback and hands the conversation to staff,
        unless staff already owns it.
        """
        if not await self.handoff.is_ai_active(job.conversation_id):
            logger.info(f"No fallback for {job.conversation_id}: staff has the conversation")
            return

        logger.warning(f"Sending fallback for {job.conversation_id} after {error!r}")
        record_fallback(FallbackCategory.GENERIC)
        await self._deliver_ai_message(
            job, FALLBACK_MESSAGES[FallbackCategory.GENERIC], HandoffTrigger.UPSTREAM_FAILURE
        )

    async def _deliver_ai_message(self, job: ReplyJob, text: str, trigger: Optional[HandoffTrigger]):
        try:
            await self._store_message(job.conversation_id, SenderType.AI, text)
        except DataStoreError as e:
            logger.error(f"AI reply for {job.conversation_id} not stored, delivering anyway: {e}")

        if trigger is not None:
            try:
                await self.handoff.escalate(job.conversation_id, trigger)
            except DataStoreError as e:
                logger.error(f"Handoff for {job.conversation_id} not recorded, delivering anyway: {e}")

        channel = await self._load_channel(job.channel_id)
        if channel is None:
            logger.error(f"Channel {job.channel_id} disappeared, reply for {job.conversation_id} not sent")
            return
        await self.dispatcher.send(channel, job.platform_user_id, text)

    async def _load_channel(self, channel_id: str) -> Optional[ConnectedChannel]:
        async with self.session_factory() as session:
            return await ChannelRepository(session).get_by_id(channel_id)

    # ── Staff actions ─────────────────────────────────────────────

    async def send_agent_message(self, conversation_id: str, text: str) -> Message:
        """
        Store and deliver a staff reply.

        Raises:
            NotFound: Unknown conversation
            AIModeConflict: The AI still owns the conversation
            ValueError: Empty text
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("Message text must not be empty")

        async with self.session_factory() as session:
            conversation = await ConversationRepository(session).get_with_identity(conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        if conversation.ai_mode:
            raise AIModeConflict("Turn off AI mode before replying as staff")

        message = await self._store_message(conversation_id, SenderType.AGENT, text)

        channel = await self._load_channel(conversation.channel_id) if conversation.channel_id else None
        if channel is None:
            logger.error(f"Conversation {conversation_id} has no channel, staff reply stored only")
            return message

        await self.dispatcher.send(channel, conversation.identity.platform_user_id, text)
        return message
