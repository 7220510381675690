"""
Assistant Application Services
==============================

- GapTrackerService: reviews answers for missing specifics and opens
  follow-up tickets
- FollowUpDispatchService: hands tickets to the follow-up channel
- ConversationService: append-only turn log and the recent-turn window
- AssistantService: query -> tier -> context -> completion -> gap review
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

from knowledge_pipeline.assistant.application.interfaces import (
    IConversationRepository,
    IFollowUpNotifier,
    IGapTicketRepository,
)
from knowledge_pipeline.assistant.domain import (
    AssistantAnswer,
    ConversationTurn,
    GapReview,
    GapTicket,
    detect_missing_specifics,
    follow_up_due,
    format_commitment,
)
from knowledge_pipeline.config import settings
from knowledge_pipeline.core import LLMException
from knowledge_pipeline.infrastructure.llm import ILLMClient
from knowledge_pipeline.retrieval.application.services import ContextAssembler, KnowledgeTierService
from knowledge_pipeline.retrieval.domain import AssembledContext, TierPolicy
from knowledge_pipeline.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

SESSION_CONTEXT = "knowledge_assistant"


class GapTrackerService:
    """Turns an answer's missing specifics into a dated commitment and ticket."""

    def __init__(self, ticket_repository: IGapTicketRepository):
        self._tickets = ticket_repository

    async def review(
        self,
        organization_id: str,
        prompt: str,
        answer: str,
        now: Optional[datetime] = None
    ) -> GapReview:
        """
        Review one prompt/answer pair.

        Ticket creation is best effort: a failure or timeout is logged and the
        review still carries the commitment, with ``ticket_id`` left None.
        """
        missing = detect_missing_specifics(prompt, answer)
        if not missing:
            return GapReview()

        now = now or datetime.now(timezone.utc)
        due = follow_up_due(now, settings.followup_hours)
        review = GapReview(
            missing_specifics=missing,
            commitment=format_commitment(missing, due),
            follow_up_at=due,
        )

        ticket = GapTicket(
            organization_id=organization_id,
            prompt=prompt,
            missing_specifics=missing,
            follow_up_at=due,
            created_at=now,
        )
        try:
            created = await asyncio.wait_for(
                self._tickets.create(ticket),
                timeout=settings.gap_ticket_timeout_seconds
            )
            review.ticket_id = created.id
        except asyncio.TimeoutError:
            logger.warning(
                "Gap ticket creation timed out",
                extra={"organization_id": organization_id, "timeout_seconds": settings.gap_ticket_timeout_seconds}
            )
        except Exception as e:
            logger.error(
                "Gap ticket creation failed",
                extra={"organization_id": organization_id, "error": str(e), "error_type": type(e).__name__}
            )

        logger.info(
            "Gap review completed",
            extra={
                "organization_id": organization_id,
                "missing_specifics": missing,
                "ticket_id": review.ticket_id,
            }
        )
        return review


class FollowUpDispatchService:
    """
    At-least-once hand-off of gap tickets.

    A ticket moves to ``scheduled`` only after the notifier accepted it, and
    the conditional repository update keeps repeated dispatches from
    transitioning it twice.
    """

    def __init__(self, ticket_repository: IGapTicketRepository, notifier: IFollowUpNotifier):
        self._tickets = ticket_repository
        self._notifier = notifier

    async def dispatch(self, ticket_id: str) -> bool:
        ticket = await self._tickets.get(ticket_id)
        if ticket is None or ticket.notification_dispatched:
            return False
        return await self._dispatch_ticket(ticket)

    async def dispatch_pending(self, limit: int = 50) -> int:
        """Re-dispatch pending tickets; returns how many were handed off."""
        dispatched = 0
        for ticket in await self._tickets.list_undispatched(limit):
            if await self._dispatch_ticket(ticket):
                dispatched += 1

        if dispatched:
            logger.info("Pending follow-ups dispatched", extra={"dispatched": dispatched})
        return dispatched

    async def _dispatch_ticket(self, ticket: GapTicket) -> bool:
        try:
            accepted = await self._notifier.dispatch(ticket)
        except Exception as e:
            logger.error(
                "Follow-up dispatch failed",
                extra={"ticket_id": ticket.id, "error": str(e), "error_type": type(e).__name__}
            )
            return False

        if not accepted:
            return False
        return await self._tickets.mark_dispatched(ticket.id, datetime.now(timezone.utc))


class ConversationService:
    """Conversation State Manager backed by the append-only turn log."""

    def __init__(self, conversation_repository: IConversationRepository):
        self._turns = conversation_repository

    async def append_turn(
        self,
        organization_id: str,
        prompt: str,
        response: str,
        user_id: Optional[str] = None,
        upstream_response_id: Optional[str] = None,
        session_context: Optional[str] = None
    ) -> ConversationTurn:
        previous_response_id = await self.latest_response_id(organization_id, user_id)
        turn = ConversationTurn(
            organization_id=organization_id,
            user_id=user_id,
            prompt=prompt,
            response=response,
            upstream_response_id=upstream_response_id,
            metadata={
                "previous_response_id": previous_response_id,
                "session_context": session_context or SESSION_CONTEXT,
            },
        )
        return await self._turns.append(turn)

    async def get_window(
        self,
        organization_id: str,
        limit: Optional[int] = None,
        user_id: Optional[str] = None
    ) -> List[Dict[str, str]]:
        """Recent turns as chronological user/assistant messages."""
        limit = limit or settings.conversation_window_turns
        limit = max(1, min(limit, settings.conversation_max_turns))

        turns = await self._turns.recent(organization_id, limit, user_id)
        messages: List[Dict[str, str]] = []
        for turn in reversed(turns):
            messages.append({"role": "user", "content": turn.prompt})
            messages.append({"role": "assistant", "content": turn.response})
        return messages

    async def build_contextual_input(
        self,
        organization_id: str,
        prompt: str,
        user_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> str:
        window = await self.get_window(organization_id, limit, user_id)
        if not window:
            return prompt

        lines = [f"{m['role'].upper()}: {m['content']}" for m in window]
        lines.append(f"USER: {prompt}")
        return "\n\n".join(lines)

    async def latest_response_id(self, organization_id: str, user_id: Optional[str] = None) -> Optional[str]:
        turns = await self._turns.recent(organization_id, 1, user_id)
        return turns[0].upstream_response_id if turns else None


class AssistantService:
    """
    Grounded answers for organization queries.

    Orchestrates tier classification, context assembly, the conversation
    window, the completion call and the gap review.
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        tier_service: KnowledgeTierService,
        context_assembler: ContextAssembler,
        conversation_service: ConversationService,
        gap_tracker: GapTrackerService
    ):
        self._llm = llm_client
        self._tiers = tier_service
        self._assembler = context_assembler
        self._conversations = conversation_service
        self._gaps = gap_tracker

    async def ask(
        self,
        organization_id: str,
        query: str,
        user_id: Optional[str] = None,
        domain: Optional[str] = None,
        target_item_number: Optional[int] = None
    ) -> AssistantAnswer:
        tier, policy = self._tiers.classify(query)
        context = await self._assembler.assemble(
            query,
            organization_id,
            domain=domain,
            target_item_number=target_item_number,
            tier=tier,
        )
        history = await self._conversations.get_window(organization_id, user_id=user_id)

        messages = [{"role": "system", "content": self._get_system_prompt(policy, domain)}]
        messages.extend(history)
        messages.append({"role": "user", "content": self._build_user_message(query, context)})

        try:
            with log_latency(logger, "assistant_completion", organization_id=organization_id, tier=tier):
                response = await self._llm.chat_completion(
                    messages=messages,
                    temperature=settings.llm_temperature,
                    max_tokens=settings.llm_max_tokens,
                    operation="assistant"
                )
        except Exception as e:
            raise LLMException(f"Answer generation failed: {e}")

        answer = response.content
        review = await self._gaps.review(organization_id, query, answer)
        if review.commitment:
            answer = f"{answer}\n\n{review.commitment}"

        await self._conversations.append_turn(
            organization_id,
            query,
            answer,
            user_id=user_id,
            upstream_response_id=response.response_id,
        )

        logger.info(
            "Assistant answer generated",
            extra={
                "organization_id": organization_id,
                "tier": tier,
                "search_method": context.search_method,
                "context_chunks": context.chunk_count,
                "missing_specifics": review.missing_specifics,
                "latency_ms": response.latency_ms,
            }
        )

        return AssistantAnswer(
            answer=answer,
            tier=tier,
            context_sources=[
                {
                    "document_id": s.document_id,
                    "title": s.title,
                    "chunk_id": s.chunk_id,
                    "section": s.section,
                    "score": s.score,
                }
                for s in context.sources
            ],
            search_method=context.search_method,
            missing_specifics=review.missing_specifics,
            commitment=review.commitment,
            ticket_id=review.ticket_id,
            advisory_only=policy.advisory_only,
            missing_item_content=context.missing_item_content,
            response_id=response.response_id,
        )

    @staticmethod
    def _build_user_message(query: str, context: AssembledContext) -> str:
        return f"""CONTEXT FROM ORGANIZATION DOCUMENTS:

{context.text}

---

QUESTION: {query}

Answer from the context above. Name the specific owners, thresholds, systems, schedules, rules and sites it gives."""

    @staticmethod
    def _get_system_prompt(policy: TierPolicy, domain: Optional[str]) -> str:
        prompt = f"""You are a compliance and operational maturity assistant.

Guidelines:
1. ONLY use information from the provided organization context
2. Prefer authoritative and item-specific sources over general content
3. If the context does not contain a detail, say so instead of guessing
4. Be concise and actionable

Domain focus: {domain or 'Cross-domain maturity'}
Validation level: {policy.validation}"""
        if policy.advisory_only:
            prompt += "\n\nThe context is external awareness material. Treat it as advisory only and never as compliance evidence."
        return prompt
