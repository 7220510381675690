"""
Assistant Controllers (API Routes)
==================================

FastAPI routes for gap review, conversation state and grounded answers.

Controllers are thin - they delegate to application services.
"""

from typing import AsyncGenerator, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_pipeline.assistant.application import (
    AskRequest,
    AskResponse,
    AssistantService,
    ConversationMessage,
    ConversationService,
    ConversationTurnRequest,
    ConversationTurnResponse,
    ConversationWindowResponse,
    FollowUpDispatchService,
    GapReviewRequest,
    GapReviewResponse,
    GapTrackerService,
)
from knowledge_pipeline.assistant.infrastructure import (
    SQLAlchemyConversationRepository,
    SQLAlchemyGapTicketRepository,
    get_followup_notifier,
)
from knowledge_pipeline.core import RateLimitExceededException
from knowledge_pipeline.infrastructure.database import get_session, get_session_context, get_session_maker
from knowledge_pipeline.infrastructure.llm import create_llm_client
from knowledge_pipeline.retrieval.application import ContextAssembler, KnowledgeTierService
from knowledge_pipeline.retrieval.interfaces.controllers import get_context_assembler, get_tier_service
from knowledge_pipeline.shared.infrastructure.logging import get_logger
from knowledge_pipeline.shared.infrastructure.rate_limit import SQLAlchemyRateLimiter, rate_limit_key

logger = get_logger(__name__)
router = APIRouter(prefix="/assistant", tags=["Assistant"])

ASK_TOOL = "assistant_ask"


# ========== Example payloads for Swagger ==========

GAP_REQUEST_EXAMPLE = {
    "organizationId": "0d5c8e9a-7f3b-4a61-b1e2-93c4d5e6f708",
    "prompt": "Who is responsible for the recovery plant and what is the variance threshold?",
    "answer": "Appropriate personnel will monitor the plant as needed."
}

GAP_RESPONSE_EXAMPLE = {
    "missing_specifics": ["responsible owners", "numeric thresholds", "specific details"],
    "commitment": "I'll confirm responsible owners, numeric thresholds, specific details by Mar 03, 2025.",
    "ticket_id": "3f2b8c1d-9e4a-4b7c-8d6e-5a4b3c2d1e0f",
    "follow_up_at": "2025-03-03T09:30:00Z"
}

ASK_REQUEST_EXAMPLE = {
    "organizationId": "0d5c8e9a-7f3b-4a61-b1e2-93c4d5e6f708",
    "userId": "auditor-17",
    "query": "Who signs off the MPS 7 leadership review and how often?",
    "domain": "Leadership & Governance",
    "targetItemNumber": 7
}


# ========== Dependencies ==========

def get_conversation_service(
    session: AsyncSession = Depends(get_session)
) -> ConversationService:
    return ConversationService(SQLAlchemyConversationRepository(session))


def get_gap_tracker(
    session: AsyncSession = Depends(get_session)
) -> GapTrackerService:
    return GapTrackerService(SQLAlchemyGapTicketRepository(session))


def get_assistant_service(
    tier_service: KnowledgeTierService = Depends(get_tier_service),
    assembler: ContextAssembler = Depends(get_context_assembler),
    conversations: ConversationService = Depends(get_conversation_service),
    gap_tracker: GapTrackerService = Depends(get_gap_tracker)
) -> AssistantService:
    return AssistantService(
        llm_client=create_llm_client(),
        tier_service=tier_service,
        context_assembler=assembler,
        conversation_service=conversations,
        gap_tracker=gap_tracker,
    )


async def get_rate_limiter() -> AsyncGenerator[SQLAlchemyRateLimiter, None]:
    """Rate limiter on a dedicated session; hits commit independently of the request."""
    async with get_session_maker()() as session:
        yield SQLAlchemyRateLimiter(session)


# ========== Background Tasks ==========

async def dispatch_followup(ticket_id: str) -> None:
    """Hand a new ticket to the follow-up channel after the response is sent."""
    try:
        async with get_session_context() as session:
            service = FollowUpDispatchService(SQLAlchemyGapTicketRepository(session), get_followup_notifier())
            await service.dispatch(ticket_id)
    except Exception as e:
        # The scheduler retries undispatched tickets
        logger.error(
            "Background follow-up dispatch failed",
            extra={"ticket_id": ticket_id, "error": str(e), "error_type": type(e).__name__}
        )


# ========== Route Handlers ==========

@router.post(
    "/gaps",
    response_model=GapReviewResponse,
    summary="Review an answer for missing specifics",
    description="""
    Detect which specifics the prompt asked for that the answer does not give:
    responsible owners, numeric thresholds, named systems, operational
    cadences, jurisdiction-specific rules, site-specific procedures, plus
    `specific details` for generic hedges.

    When anything is missing a gap ticket is opened with a follow-up date 48
    hours ahead, and its notification is dispatched in the background.
    """,
    responses={
        200: {
            "description": "Gap review",
            "content": {"application/json": {"example": GAP_RESPONSE_EXAMPLE}}
        }
    }
)
async def review_gaps(
    background_tasks: BackgroundTasks,
    request: GapReviewRequest = Body(..., examples=[GAP_REQUEST_EXAMPLE]),
    gap_tracker: GapTrackerService = Depends(get_gap_tracker)
):
    review = await gap_tracker.review(request.organization_id, request.prompt, request.answer)
    if review.ticket_id:
        background_tasks.add_task(dispatch_followup, review.ticket_id)
    return GapReviewResponse.from_review(review)


@router.post(
    "/conversations/turns",
    response_model=ConversationTurnResponse,
    status_code=201,
    summary="Store a conversation turn"
)
async def append_turn(
    request: ConversationTurnRequest,
    conversations: ConversationService = Depends(get_conversation_service)
):
    turn = await conversations.append_turn(
        request.organization_id,
        request.prompt,
        request.response,
        user_id=request.user_id,
        upstream_response_id=request.upstream_response_id,
    )
    return ConversationTurnResponse.from_turn(turn)


@router.get(
    "/conversations/window",
    response_model=ConversationWindowResponse,
    summary="Get the recent conversation window",
    description="Most recent turns (default 3, at most 10) as chronological user/assistant messages."
)
async def get_window(
    organization_id: str = Query(..., description="Organization UUID"),
    limit: Optional[int] = Query(None, ge=1, description="Number of turns"),
    user_id: Optional[str] = Query(None, description="Restrict to one user's turns"),
    conversations: ConversationService = Depends(get_conversation_service)
):
    messages = await conversations.get_window(organization_id, limit=limit, user_id=user_id)
    latest = await conversations.latest_response_id(organization_id, user_id=user_id)
    return ConversationWindowResponse(
        messages=[ConversationMessage(**m) for m in messages],
        latest_response_id=latest,
    )


@router.post(
    "/ask",
    response_model=AskResponse,
    summary="Ask a grounded question",
    description="""
    Classify the query's knowledge tier, assemble context from the
    organization's documents, include the recent conversation window, and
    generate an answer. Missing specifics are turned into a dated follow-up
    commitment appended to the answer.

    Rate limited per organization and user (`RATE_LIMIT_PER_MINUTE`).
    """,
    responses={429: {"description": "Rate limit exceeded"}}
)
async def ask(
    background_tasks: BackgroundTasks,
    request: AskRequest = Body(..., examples=[ASK_REQUEST_EXAMPLE]),
    limiter: SQLAlchemyRateLimiter = Depends(get_rate_limiter),
    assistant: AssistantService = Depends(get_assistant_service)
):
    usage = await limiter.hit(rate_limit_key(request.organization_id, request.user_id, ASK_TOOL))
    if usage.exceeded:
        raise RateLimitExceededException(usage.key, usage.limit)

    answer = await assistant.ask(
        request.organization_id,
        request.query,
        user_id=request.user_id,
        domain=request.domain,
        target_item_number=request.target_item_number,
    )
    if answer.ticket_id:
        background_tasks.add_task(dispatch_followup, answer.ticket_id)
    return AskResponse.from_answer(answer)


# Export router for inclusion in main app
assistant_router = router
