"""Message submission endpoint."""

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from relay_shared.logging import get_logger
from relay_shared.models import Message
from relay_shared.queue import MessagePublisher

logger = get_logger(__name__)

router = APIRouter(tags=["messages"])


class MessageAccepted(BaseModel):
    """Response for an accepted message."""
    status: str = "success"
    message: str = "Message accepted for processing"
    message_id: str = Field(alias="messageId")

    model_config = ConfigDict(populate_by_name=True)


def get_publisher(request: Request) -> MessagePublisher:
    """Dependency returning the publisher created by the application lifespan."""
    publisher = getattr(request.app.state, "publisher", None)
    if publisher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Message publisher not initialized",
        )
    return publisher


@router.post(
    "/messages",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=MessageAccepted,
    response_model_by_alias=True,
)
async def publish_message(
    request: Request,
    publisher: MessagePublisher = Depends(get_publisher),
) -> MessageAccepted:
    """
    Accept a JSON object and publish it to the publish queue.

    The whole payload becomes the message ``content``. A top-level ``id`` in
    the payload is reused as the message id; otherwise a UUID is generated.

    Raises:
        HTTPException: 400 for an empty or invalid body
        PublishError: If the broker refuses the message (mapped to 503)
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty or invalid payload")

    if not isinstance(payload, dict) or not payload:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty or invalid payload")

    payload_id = payload.get("id")
    message = Message.create(payload, message_id=str(payload_id) if payload_id else None)

    settings = request.app.state.settings
    await publisher.publish(message, settings.rabbitmq_queue_publish)

    logger.info("Message accepted", message_id=message.id, queue=settings.rabbitmq_queue_publish)
    return MessageAccepted(message_id=message.id)
