"""Queue message data transfer objects.

Defines the envelope that crosses every transport call (body, receipt handle,
string attributes) and the descriptor a listener is registered with.
"""

from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

SIGNATURE_ATTRIBUTE = "Signature"
RESPONSE_QUEUE_URL_ATTRIBUTE = "ResponseQueueUrl"

MAX_BATCH = 10


class QueueMessage(BaseModel):
    """A message as received from a queue.

    The body is opaque text. Attributes keep every key the sender set; the
    bus only looks at Signature and ResponseQueueUrl.
    """

    body: str = Field(..., description="Message payload")
    receipt_handle: str = Field(..., description="Handle needed to delete (ack) this copy of the message")
    attributes: dict[str, str] = Field(default_factory=dict, description="String message attributes")
    message_id: str | None = Field(None, description="Transport message identifier")

    @property
    def signature(self) -> str | None:
        """Correlation token the reply must carry, if any."""
        return self.attributes.get(SIGNATURE_ATTRIBUTE)

    @property
    def response_queue_url(self) -> str | None:
        """Queue the sender awaits the reply on, if any."""
        return self.attributes.get(RESPONSE_QUEUE_URL_ATTRIBUTE)


class ListenerDescriptor(BaseModel):
    """How a source queue is polled and which handler processes its messages.

    A handler returning None (or an empty string) sends no reply.
    """

    model_config = ConfigDict(frozen=True)

    source_queue_url: str = Field(..., min_length=1, description="Queue to poll")
    handler: Callable[[str], Optional[str]] = Field(..., description="Called with each message body")
    parallel: bool = Field(True, description="Process a batch concurrently instead of in received order")
    max_batch: int = Field(MAX_BATCH, ge=1, le=MAX_BATCH, description="Messages requested per poll")
    min_processing_ms: int = Field(0, ge=0, description="Minimum wall-clock time spent per message")
