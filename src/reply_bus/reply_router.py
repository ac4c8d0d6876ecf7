"""Send a handler's reply back to the queue the request came from."""

import logging

from reply_bus.exceptions import MissingCorrelationError, SendError
from reply_bus.persist_base import QueueTransport
from reply_bus.queue_model_dto import RESPONSE_QUEUE_URL_ATTRIBUTE, SIGNATURE_ATTRIBUTE, QueueMessage

logger = logging.getLogger(__name__)


class ReplyRouter:
    """Routes replies using the ResponseQueueUrl and Signature of the request."""

    def __init__(self, transport: QueueTransport) -> None:
        self.transport = transport

    def route(self, message: QueueMessage, reply: str) -> bool:
        """Send reply to the request's response queue, tagged with its Signature.

        Returns True when the reply was sent. Missing correlation attributes and
        send failures are logged, never raised.
        """
        response_queue_url = message.response_queue_url
        signature = message.signature
        if not response_queue_url or not signature:
            error = MissingCorrelationError(
                f"{RESPONSE_QUEUE_URL_ATTRIBUTE} or {SIGNATURE_ATTRIBUTE} not found in message attributes"
            )
            logger.error("Reply for message %s not sent: %s", message.message_id, error)
            return False
        logger.info("Sending reply %s to %s", signature, response_queue_url)
        try:
            self.transport.send(response_queue_url, reply, {SIGNATURE_ATTRIBUTE: signature})
        except SendError as e:
            logger.error("Error sending reply %s: %s", signature, e)
            return False
        return True
