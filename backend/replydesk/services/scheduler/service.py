from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Set

from replydesk.core.config import settings
from replydesk.core.logging import get_logger
from replydesk.prompts.system_prompts import clarification_question, handoff_note, no_info_reply
from replydesk.schemas.chat import HallucinationRisk, ReplyPayload
from replydesk.services.chat.generation import ReplyGenerator
from replydesk.services.chat.product_cards import build_product_cards
from replydesk.services.chat.validator import ResponseValidator
from replydesk.services.contracts import ConversationStore, ReplyDelivery
from replydesk.services.conversations.types import ConversationSnapshot, StoredMessage
from replydesk.services.intent.classifier import IntentClassifier
from replydesk.services.intent.types import ReplyAction, resolve_route

logger = get_logger(__name__)

Clock = Callable[[], datetime]
Sleeper = Callable[[float], Awaitable[None]]


class EvaluationOutcome(str, enum.Enum):
    STALE = "stale"
    SKIPPED_HANDOFF = "skipped_handoff"
    NOTHING_PENDING = "nothing_pending"
    HANDED_OFF = "handed_off"
    REPLIED = "replied"
    SUPERSEDED = "superseded"
    COMMIT_LOST = "commit_lost"
    FAILED = "failed"


@dataclass(frozen=True)
class ScheduledJob:
    conversation_id: int
    trigger_message_id: int
    enqueued_at: datetime
    generation: Optional[int] = None


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ResponseScheduler:
    """Debounces inbound bursts and produces at most one fresh reply per burst.

    Each inbound message schedules its own evaluation after ``delay_seconds``.
    An evaluation only proceeds while its trigger is still the latest inbound
    message, or once the burst is older than ``max_wait_seconds``. Freshness is
    checked again after generation, and the commit itself is a compare-and-set
    on the conversation's reply generation.
    """

    def __init__(
        self,
        *,
        store: ConversationStore,
        classifier: IntentClassifier,
        generator: ReplyGenerator,
        validator: Optional[ResponseValidator] = None,
        delivery: Optional[ReplyDelivery] = None,
        delay_seconds: Optional[float] = None,
        max_wait_seconds: Optional[float] = None,
        reply_language: Optional[str] = None,
        clock: Clock = _utc_now,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.store = store
        self.classifier = classifier
        self.generator = generator
        self.validator = validator or ResponseValidator()
        self.delivery = delivery
        self.delay_seconds = float(
            delay_seconds if delay_seconds is not None else getattr(settings, "RESPONSE_DELAY_SECONDS", 3.0)
        )
        self.max_wait_seconds = float(
            max_wait_seconds if max_wait_seconds is not None else getattr(settings, "MAX_WAIT_SECONDS", 15.0)
        )
        self.history_limit = int(getattr(settings, "MAX_HISTORY_MESSAGES", 10))
        self.reply_language = reply_language or str(getattr(settings, "REPLY_LANGUAGE", "tr"))
        self._clock = clock
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()
        self._outcomes: Dict[str, int] = {outcome.value: 0 for outcome in EvaluationOutcome}

    def stats(self) -> Dict[str, int]:
        return {"pending": len(self._tasks), **self._outcomes}

    def schedule(
        self,
        conversation_id: int,
        trigger_message_id: int,
        enqueued_at: Optional[datetime] = None,
        generation: Optional[int] = None,
    ) -> asyncio.Task:
        job = ScheduledJob(
            conversation_id=conversation_id,
            trigger_message_id=trigger_message_id,
            enqueued_at=_utc(enqueued_at or self._clock()),
            generation=generation,
        )
        task = asyncio.create_task(self._delayed(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _delayed(self, job: ScheduledJob) -> EvaluationOutcome:
        await self._sleep(self.delay_seconds)
        return await self.run_job(job)

    async def run_job(self, job: ScheduledJob) -> EvaluationOutcome:
        try:
            outcome = await self.evaluate(job)
        except Exception:
            # No retry: a newer evaluation for the same burst may already be answering it.
            logger.exception(
                f"[SCHEDULER] evaluation failed conversation={job.conversation_id} trigger={job.trigger_message_id}"
            )
            outcome = EvaluationOutcome.FAILED
        self._outcomes[outcome.value] += 1
        logger.info(
            f"[SCHEDULER] conversation={job.conversation_id} trigger={job.trigger_message_id} outcome={outcome.value}"
        )
        return outcome

    def should_proceed(self, job: ScheduledJob, snapshot: Optional[ConversationSnapshot]) -> bool:
        if snapshot is None or not snapshot.has_unanswered:
            return False
        if job.generation is not None and snapshot.replied_generation >= job.generation:
            return False
        if snapshot.latest_inbound_id == job.trigger_message_id:
            return True
        return self._burst_age_seconds(job, snapshot) >= self.max_wait_seconds

    def _burst_age_seconds(self, job: ScheduledJob, snapshot: ConversationSnapshot) -> float:
        started = [job.enqueued_at]
        if snapshot.burst_started_at is not None:
            started.append(_utc(snapshot.burst_started_at))
        return (_utc(self._clock()) - min(started)).total_seconds()

    async def evaluate(self, job: ScheduledJob) -> EvaluationOutcome:
        conversation_id = job.conversation_id
        snapshot = await self.store.snapshot(conversation_id)
        if snapshot is not None and snapshot.handed_off:
            return EvaluationOutcome.SKIPPED_HANDOFF
        if not self.should_proceed(job, snapshot):
            return EvaluationOutcome.STALE
        target_generation = snapshot.burst_generation

        batch = await self.store.pending_batch(conversation_id)
        # Messages that arrived after the snapshot belong to a later generation.
        if snapshot.latest_inbound_id is not None:
            batch = [message for message in batch if message.id <= snapshot.latest_inbound_id]
        if not batch:
            return EvaluationOutcome.NOTHING_PENDING
        covered_inbound_id = max(message.id for message in batch)
        history = await self.store.history(conversation_id, self.history_limit)
        texts = [message.content for message in batch]

        intent = await self.classifier.classify(texts, self._context_lines(history))
        route = resolve_route(intent)
        logger.info(
            f"[SCHEDULER] conversation={conversation_id} intents={sorted(label.value for label in intent.intents)} "
            f"confidence={intent.confidence} source={intent.source} action={route.action.value}"
        )

        if route.action is ReplyAction.HANDOFF:
            if not await self._still_fresh(job):
                return EvaluationOutcome.SUPERSEDED
            claimed = await self.store.mark_handoff(
                conversation_id, target_generation, handoff_note(self.reply_language), covered_inbound_id
            )
            return EvaluationOutcome.HANDED_OFF if claimed else EvaluationOutcome.COMMIT_LOST

        if route.action is ReplyAction.CLARIFY:
            reply = ReplyPayload(
                text=intent.clarification_question or clarification_question("generic", self.reply_language),
                kind="clarification",
                confidence="medium",
            )
        else:
            reply = await self._generate_reply(
                texts=texts,
                history=history,
                snapshot=snapshot,
                intent=intent,
                route=route,
            )

        if not await self._still_fresh(job):
            return EvaluationOutcome.SUPERSEDED
        message_id = await self.store.commit_reply(conversation_id, target_generation, reply, covered_inbound_id)
        if message_id is None:
            return EvaluationOutcome.COMMIT_LOST
        if reply.no_info:
            await self.store.update_attributes(conversation_id, {"ai_handoff_required": True})
        if self.delivery is not None:
            await self.delivery.deliver(conversation_id, message_id, reply)
        return EvaluationOutcome.REPLIED

    async def _generate_reply(self, *, texts, history, snapshot, intent, route) -> ReplyPayload:
        result = await self.generator.generate(
            message="\n".join(texts),
            history=history,
            intent=intent,
            route=route,
            reply_language=self.reply_language,
        )
        validation = self.validator.validate(result.text, result.faq_ids, result.document_ids)
        text = validation.cleaned_text
        no_info = validation.no_info_response
        if not text:
            text = no_info_reply(self.reply_language)
            no_info = True
        risk = validation.hallucination_risk
        return ReplyPayload(
            text=text,
            kind="answer",
            confidence=validation.confidence,
            hallucination_risk=HallucinationRisk(score=risk.score, level=risk.level, reasons=list(risk.reasons)),
            citations=validation.citations,
            product_cards=build_product_cards(result.products, snapshot.channel),
            no_info=no_info,
        )

    async def _still_fresh(self, job: ScheduledJob) -> bool:
        return self.should_proceed(job, await self.store.snapshot(job.conversation_id))

    @staticmethod
    def _context_lines(history: List[StoredMessage]) -> List[str]:
        return [f"{'customer' if entry.role == 'user' else 'assistant'}: {entry.content}" for entry in history]
