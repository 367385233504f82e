from fastapi import APIRouter, Depends, status

from replydesk.api.deps import get_conversation_store, get_scheduler
from replydesk.schemas.chat import InboundMessageRequest, InboundMessageResponse
from replydesk.services.conversations.repository import SqlConversationStore
from replydesk.services.scheduler.service import ResponseScheduler

router = APIRouter()


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=InboundMessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def receive_message(
    conversation_id: int,
    payload: InboundMessageRequest,
    store: SqlConversationStore = Depends(get_conversation_store),
    scheduler: ResponseScheduler = Depends(get_scheduler),
):
    """Record an inbound customer message and schedule a debounced reply."""
    receipt = await store.record_inbound(
        conversation_id,
        payload.content,
        private=payload.private,
        channel=payload.channel,
    )
    scheduled = False
    if not payload.private:
        scheduler.schedule(conversation_id, receipt.message_id, receipt.created_at, receipt.generation)
        scheduled = True
    return InboundMessageResponse(
        conversation_id=conversation_id,
        message_id=receipt.message_id,
        generation=receipt.generation,
        scheduled=scheduled,
    )
