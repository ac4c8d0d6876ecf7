"""Amazon SQS queue transport.

Uses a boto3 SQS client for queue lifecycle, send, long-poll receive and
delete. Botocore failures are translated into the bus's transport errors.
"""

import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from reply_bus.exceptions import (
    AckError,
    PollError,
    QueueCreationError,
    QueueLookupError,
    QueueRemovalError,
    SendError,
)
from reply_bus.persist_base import LONG_POLL_SECONDS, QueueTransport
from reply_bus.queue_model_dto import MAX_BATCH, QueueMessage

logger = logging.getLogger(__name__)

NON_EXISTENT_QUEUE_CODES = ("AWS.SimpleQueueService.NonExistentQueue", "QueueDoesNotExist")


class SQSTransport(QueueTransport):
    """Queue transport implementation using Amazon SQS.

    Either wraps the given boto3 client or builds one from a region and an
    optional endpoint override (useful for localstack). boto3 clients are
    thread-safe, so one transport is shared by the broker and all listeners.
    """

    def __init__(self, client=None, region_name: str | None = None, endpoint_url: str | None = None) -> None:
        """Use the given SQS client or create one for the region/endpoint."""
        self.client = client or boto3.client("sqs", region_name=region_name, endpoint_url=endpoint_url)

    def create_queue(self, queue_name: str) -> str:
        """Create the queue and return its URL."""
        logger.info("SQS - creating queue %s", queue_name)
        try:
            return self.client.create_queue(QueueName=queue_name)["QueueUrl"]
        except (BotoCoreError, ClientError) as e:
            logger.error("SQS - error creating queue %s: %s", queue_name, e)
            raise QueueCreationError(str(e)) from e

    def delete_queue(self, queue_url: str) -> None:
        """Delete the queue."""
        logger.info("SQS - deleting queue %s", queue_url)
        try:
            self.client.delete_queue(QueueUrl=queue_url)
        except (BotoCoreError, ClientError) as e:
            logger.error("SQS - error deleting queue %s: %s", queue_url, e)
            raise QueueRemovalError(str(e)) from e

    def get_queue_url(self, queue_name: str) -> str | None:
        """Return the queue URL, or None if SQS reports the queue does not exist."""
        try:
            return self.client.get_queue_url(QueueName=queue_name)["QueueUrl"]
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in NON_EXISTENT_QUEUE_CODES:
                return None
            raise QueueLookupError(str(e)) from e
        except BotoCoreError as e:
            raise QueueLookupError(str(e)) from e

    def send(self, queue_url: str, body: str, attributes: dict[str, str] | None = None) -> None:
        """Send the body with each attribute as a String message attribute."""
        logger.debug("SQS - sending message to %s", queue_url)
        request = {"QueueUrl": queue_url, "MessageBody": body}
        if attributes:
            request["MessageAttributes"] = {
                key: {"DataType": "String", "StringValue": value} for key, value in attributes.items()
            }
        try:
            self.client.send_message(**request)
        except (BotoCoreError, ClientError) as e:
            logger.error("SQS - error sending message to %s: %s", queue_url, e)
            raise SendError(str(e)) from e

    def receive(
        self,
        queue_url: str,
        max_messages: int = MAX_BATCH,
        wait_seconds: int = LONG_POLL_SECONDS,
    ) -> list[QueueMessage]:
        """Long-poll the queue, requesting all message and system attributes."""
        try:
            response = self.client.receive_message(
                QueueUrl=queue_url,
                MaxNumberOfMessages=max(1, min(max_messages, MAX_BATCH)),
                WaitTimeSeconds=wait_seconds,
                MessageAttributeNames=["All"],
                AttributeNames=["All"],
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("SQS - error polling %s: %s", queue_url, e)
            raise PollError(str(e)) from e
        return [to_queue_message(raw) for raw in response.get("Messages", [])]

    def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        """Delete the received message identified by its receipt handle."""
        logger.debug("SQS - deleting message %s", receipt_handle)
        try:
            self.client.delete_message(QueueUrl=queue_url, ReceiptHandle=receipt_handle)
        except (BotoCoreError, ClientError) as e:
            logger.error("SQS - error deleting message %s: %s", receipt_handle, e)
            raise AckError(str(e)) from e

    def close(self) -> None:
        """Close the client's HTTP connections."""
        close = getattr(self.client, "close", None)
        if close is not None:
            close()


def to_queue_message(raw: dict) -> QueueMessage:
    """Convert a receive_message entry into a QueueMessage, keeping string attributes only."""
    attributes = {
        name: value["StringValue"]
        for name, value in raw.get("MessageAttributes", {}).items()
        if "StringValue" in value
    }
    return QueueMessage(
        body=raw.get("Body", ""),
        receipt_handle=raw["ReceiptHandle"],
        attributes=attributes,
        message_id=raw.get("MessageId"),
    )
