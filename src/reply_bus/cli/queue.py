"""Manage a queue by name.

CLI that creates a queue, shows its URL or destroys it.
"""

import os

import click
import dotenv
from icecream import ic

from config import get_settings
from reply_bus.exceptions import TransportError, UnknownProviderError
from reply_bus.persist_base import QueueTransport
from reply_bus.transports import get_transport


def queue_exists(transport: QueueTransport, queue_name: str) -> bool:
    """Return True if the given queue exists in the transport."""
    return transport.get_queue_url(queue_name) is not None


@click.command()
@click.option("--queue-name", type=str, required=True, help="The name of the queue to act on")
@click.option("--provider", type=str, required=False, help="The queue provider to use (default from settings)")
@click.option("--action", type=str, required=True, help="The action to perform on the queue")
def main(queue_name: str, provider: str | None, action: str = "status") -> str | bool | None:
    """Create, show (status) or destroy the specified queue."""
    click.echo(f"Queue {queue_name} {action}")

    if os.path.exists(".env"):
        dotenv.load_dotenv()
    try:
        transport = get_transport(get_settings(), provider)
    except UnknownProviderError as e:
        raise click.ClickException(str(e)) from e

    try:
        match action:
            case "create":
                queue_url = transport.create_queue(queue_name)
                click.echo(f"Queue {queue_name} created: {queue_url}")
                return queue_url
            case "status":
                queue_url = transport.get_queue_url(queue_name)
                if queue_url is None:
                    raise click.ClickException(f"Queue {queue_name} does not exist")
                ic(queue_url)
                click.echo(f"Queue {queue_name} url: {queue_url}")
                return queue_url
            case "destroy":
                queue_url = transport.get_queue_url(queue_name)
                if queue_url is None:
                    raise click.ClickException(f"Queue {queue_name} does not exist")
                transport.delete_queue(queue_url)
                click.echo(f"Queue {queue_name} destroyed")
                return True
            case _:
                raise click.ClickException(f"Invalid action: {action}. Valid actions are: create, status, destroy")
    except TransportError as e:
        raise click.ClickException(f"Error: {e}") from e
    finally:
        transport.close()


if __name__ == "__main__":
    main()
