"""Send a message to a queue.

CLI that sends a JSON message to a queue URL, either fire-and-forget or as a
request whose reply is awaited through a temporary response queue.
"""

import json
import os

import click
import dotenv

from config import get_settings
from reply_bus.exceptions import NoResponseQueueError, SendError, UnknownProviderError
from reply_bus.response_broker import ResponseBroker
from reply_bus.transports import get_transport


@click.command()
@click.option("--queue-url", type=str, required=True, help="The URL of the queue to send the message to")
@click.option("--message", type=str, required=True, help="The message to send (JSON)")
@click.option("--provider", type=str, required=False, help="The queue provider to use (default from settings)")
@click.option("--await-reply", is_flag=True, default=False, help="Wait for a reply to the message")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the reply")
def main(queue_url: str, message: str, provider: str | None, await_reply: bool, timeout: float | None) -> None:
    """Send a JSON message to the specified queue; optionally print the reply."""
    click.echo(f"queue-url: {queue_url}")
    click.echo(f"message: {message}")
    try:
        json.loads(message)
    except json.JSONDecodeError as err:
        raise click.ClickException(f"Invalid JSON: {message}") from err

    if os.path.exists(".env"):
        dotenv.load_dotenv()
    settings = get_settings()
    try:
        transport = get_transport(settings, provider)
    except UnknownProviderError as e:
        raise click.ClickException(str(e)) from e

    try:
        if not await_reply:
            try:
                transport.send(queue_url, message, {})
            except SendError as e:
                raise click.ClickException(f"Error sending message: {e}") from e
            click.echo("Message sent")
            return

        timeout = timeout or settings.response_timeout_seconds
        broker = ResponseBroker(
            transport,
            application_name=settings.application_name,
            orphan_ttl=settings.orphan_ttl_seconds,
        )
        broker.start()
        try:
            reply = broker.send_and_await(queue_url, message, timeout)
        except (SendError, NoResponseQueueError) as e:
            raise click.ClickException(f"Error: {e}") from e
        finally:
            broker.shutdown()
        if reply is None:
            raise click.ClickException(f"No reply received within {timeout} seconds")
        click.echo(f"Reply: {reply}")
    finally:
        transport.close()


if __name__ == "__main__":
    """Entry point for the enqueue CLI."""
    main()
