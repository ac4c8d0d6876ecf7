"""Tests for the response broker."""

import json
import threading
import time
from unittest import TestCase
from unittest.mock import MagicMock

from reply_bus.exceptions import NoResponseQueueError, PollError, QueueCreationError, QueueRemovalError, SendError
from reply_bus.persist_memory import MemoryTransport
from reply_bus.queue_model_dto import QueueMessage
from reply_bus.response_broker import MAX_QUEUE_NAME_LENGTH, ResponseBroker, response_queue_name

UUID_PATTERN = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"


class Responder:
    """Answers requests on a memory queue, optionally transforming the body."""

    def __init__(self, transport: MemoryTransport, queue_url: str, reply=lambda body: body) -> None:
        self.transport = transport
        self.queue_url = queue_url
        self.reply = reply
        self.stopping = threading.Event()
        self.thread = threading.Thread(target=self._run, daemon=True)

    def __enter__(self):
        self.thread.start()
        return self

    def __exit__(self, *exc_info):
        self.stopping.set()
        self.thread.join(5)

    def _run(self):
        while not self.stopping.is_set():
            for message in self.transport.receive(self.queue_url, 10, 0.1):
                self.transport.send(
                    message.response_queue_url,
                    self.reply(message.body),
                    {"Signature": message.signature},
                )
                self.transport.delete_message(self.queue_url, message.receipt_handle)


class ReceiveCountingTransport(MemoryTransport):
    """Memory transport recording how many receives run at once per queue."""

    def __init__(self) -> None:
        super().__init__()
        self.active: dict[str, int] = {}
        self.max_active: dict[str, int] = {}
        self.receive_calls: dict[str, int] = {}
        self._count_lock = threading.Lock()

    def receive(self, queue_url, max_messages=10, wait_seconds=20):
        with self._count_lock:
            self.active[queue_url] = self.active.get(queue_url, 0) + 1
            self.max_active[queue_url] = max(self.max_active.get(queue_url, 0), self.active[queue_url])
            self.receive_calls[queue_url] = self.receive_calls.get(queue_url, 0) + 1
        try:
            return super().receive(queue_url, max_messages, wait_seconds)
        finally:
            with self._count_lock:
                self.active[queue_url] -= 1


class ShutdownDuringSend(MemoryTransport):
    """Memory transport that shuts the broker down while a request is being sent."""

    def __init__(self) -> None:
        super().__init__()
        self.broker: ResponseBroker | None = None

    def send(self, queue_url, body, attributes=None):
        if self.broker is not None and attributes:
            self.broker.shutdown()
        super().send(queue_url, body, attributes)


class TestResponseQueueName(TestCase):
    def test_default_prefix(self):
        self.assertRegex(response_queue_name(), rf"^TEST_RQ_TEMP_{UUID_PATTERN}$")

    def test_application_prefix(self):
        self.assertRegex(response_queue_name("geo"), rf"^geo_RQ_TEMP_{UUID_PATTERN}$")

    def test_long_application_name_is_truncated(self):
        name = response_queue_name("x" * 200)
        self.assertEqual(len(name), MAX_QUEUE_NAME_LENGTH)
        self.assertTrue(name.startswith("x" * 35 + "_RQ_TEMP_"))

    def test_invalid_characters_are_replaced(self):
        self.assertTrue(response_queue_name("My App.v2").startswith("My-App-v2_RQ_TEMP_"))

    def test_names_are_unique(self):
        self.assertNotEqual(response_queue_name(), response_queue_name())


class TestBrokerLifecycle(TestCase):
    def test_start_creates_response_queue(self):
        transport = MemoryTransport()
        broker = ResponseBroker(transport, application_name="geo")
        broker.start()
        self.assertRegex(broker.queue_url, rf"^memory://geo_RQ_TEMP_{UUID_PATTERN}$")
        self.assertFalse(broker.degraded)
        broker.shutdown()
        self.assertIsNone(transport.get_queue_url(broker.queue_url.removeprefix("memory://")))

    def test_background_start(self):
        transport = MemoryTransport()
        broker = ResponseBroker(transport)
        broker.start(background=True)
        target = transport.create_queue("requests")
        with Responder(transport, target):
            self.assertEqual(broker.send_and_await(target, "hello", 5), "hello")
        broker.shutdown()

    def test_creation_failure_degrades_broker(self):
        transport = MagicMock()
        transport.create_queue.side_effect = QueueCreationError("denied")
        broker = ResponseBroker(transport)
        broker.start()
        self.assertTrue(broker.degraded)
        with self.assertRaises(NoResponseQueueError):
            broker.send_and_await("memory://requests", "body", 1)
        transport.send.assert_not_called()

        broker.send_fire_and_forget("memory://oneway", "body")
        transport.send.assert_called_once_with("memory://oneway", "body", {})

    def test_send_and_await_without_queue_fails_after_wait(self):
        broker = ResponseBroker(MemoryTransport(), queue_wait_seconds=0.2)
        start = time.monotonic()
        with self.assertRaises(NoResponseQueueError):
            broker.send_and_await("memory://requests", "body", 1)
        self.assertGreaterEqual(time.monotonic() - start, 0.2)

    def test_shutdown_is_idempotent(self):
        transport = MagicMock()
        transport.create_queue.return_value = "memory://rq"
        broker = ResponseBroker(transport)
        broker.start()
        broker.shutdown()
        broker.shutdown()
        broker.shutdown()
        transport.delete_queue.assert_called_once_with("memory://rq")

    def test_shutdown_ignores_queue_removal_error(self):
        transport = MagicMock()
        transport.create_queue.return_value = "memory://rq"
        transport.delete_queue.side_effect = QueueRemovalError("gone")
        broker = ResponseBroker(transport)
        broker.start()
        broker.shutdown()
        with self.assertRaises(NoResponseQueueError):
            broker.send_and_await("memory://requests", "body", 1)

    def test_shutdown_releases_waiters(self):
        transport = MemoryTransport()
        target = transport.create_queue("requests")
        broker = ResponseBroker(transport, long_poll_seconds=1)
        broker.start()
        results = []
        caller = threading.Thread(target=lambda: results.append(broker.send_and_await(target, "body", 30)))
        caller.start()
        time.sleep(0.3)
        broker.shutdown(join_timeout=5)
        caller.join(5)
        self.assertFalse(caller.is_alive())
        self.assertEqual(results, [None])
        self.assertFalse(broker.polling)

    def test_shutdown_while_sending_returns_none(self):
        transport = ShutdownDuringSend()
        target = transport.create_queue("requests")
        broker = ResponseBroker(transport, long_poll_seconds=1)
        broker.start()
        transport.broker = broker
        start = time.monotonic()
        self.assertIsNone(broker.send_and_await(target, "body", 3))
        self.assertLess(time.monotonic() - start, 1)
        self.assertEqual(transport.queue_depth(target), 1)
        self.assertEqual(broker.store.pending_count(), 0)

    def test_shutdown_before_registration_sends_nothing(self):
        transport = MagicMock()
        transport.create_queue.return_value = "memory://rq"
        broker = ResponseBroker(transport, long_poll_seconds=1)
        broker.start()
        await_queue_url = broker._await_queue_url

        def shut_down_after_check():
            queue_url = await_queue_url()
            broker.shutdown()
            return queue_url

        broker._await_queue_url = shut_down_after_check
        start = time.monotonic()
        with self.assertRaises(NoResponseQueueError):
            broker.send_and_await("memory://requests", "body", 3)
        self.assertLess(time.monotonic() - start, 1)
        transport.send.assert_not_called()
        self.assertFalse(broker.polling)

    def test_context_manager(self):
        transport = MemoryTransport()
        with ResponseBroker(transport) as broker:
            queue_url = broker.queue_url
            self.assertIsNotNone(queue_url)
        self.assertIsNone(transport.get_queue_url(queue_url.removeprefix("memory://")))


class TestSendAndAwait(TestCase):
    def setUp(self):
        self.transport = ReceiveCountingTransport()
        self.target = self.transport.create_queue("requests")
        self.broker = ResponseBroker(self.transport, long_poll_seconds=1)
        self.broker.start()

    def tearDown(self):
        self.broker.shutdown(join_timeout=5)

    def test_request_carries_correlation_attributes(self):
        self.broker.send_and_await(self.target, "body", 0.01)
        request = self.transport.receive(self.target, 1, 0)[0]
        self.assertRegex(request.signature, rf"^{UUID_PATTERN}$")
        self.assertEqual(request.response_queue_url, self.broker.queue_url)

    def test_reply_is_returned(self):
        with Responder(self.transport, self.target, reply=lambda body: body.upper()):
            self.assertEqual(self.broker.send_and_await(self.target, "hello", 5), "HELLO")
        self.assertEqual(self.transport.queue_depth(self.broker.queue_url), 0)

    def test_timeout_returns_none(self):
        start = time.monotonic()
        self.assertIsNone(self.broker.send_and_await(self.target, "nobody listens", 1.0))
        elapsed = time.monotonic() - start
        self.assertGreaterEqual(elapsed, 1.0)
        self.assertLessEqual(elapsed, 1.2)
        self.assertEqual(self.broker.store.pending_count(), 0)

    def test_send_error_propagates_and_clears_slot(self):
        with self.assertRaises(SendError):
            self.broker.send_and_await("memory://missing", "body", 1)
        self.assertEqual(self.broker.store.pending_count(), 0)
        self.assertFalse(self.broker.polling)

    def test_concurrent_callers_get_their_own_replies(self):
        results = {}

        def call(body):
            results[body] = self.broker.send_and_await(self.target, body, 5)

        with Responder(self.transport, self.target, reply=lambda body: json.dumps({"echo": body})):
            callers = [threading.Thread(target=call, args=(body,)) for body in ("A", "B")]
            for caller in callers:
                caller.start()
            for caller in callers:
                caller.join(10)
        self.assertEqual(results, {"A": '{"echo": "A"}', "B": '{"echo": "B"}'})
        self.assertEqual(self.transport.max_active[self.broker.queue_url], 1)

    def test_many_concurrent_callers_single_flight(self):
        bodies = [f"req-{i}" for i in range(15)]
        results = {}

        def call(body):
            results[body] = self.broker.send_and_await(self.target, body, 10)

        with Responder(self.transport, self.target):
            callers = [threading.Thread(target=call, args=(body,)) for body in bodies]
            for caller in callers:
                caller.start()
            for caller in callers:
                caller.join(15)
        self.assertEqual(results, {body: body for body in bodies})
        self.assertEqual(self.transport.max_active[self.broker.queue_url], 1)

    def test_polling_stops_when_nobody_waits(self):
        with Responder(self.transport, self.target):
            self.broker.send_and_await(self.target, "once", 5)
        deadline = time.monotonic() + 3
        while self.broker.polling and time.monotonic() < deadline:
            time.sleep(0.05)
        self.assertFalse(self.broker.polling)


class TestPollingLoop(TestCase):
    def make_broker(self, transport):
        transport.create_queue.return_value = "memory://rq"
        broker = ResponseBroker(transport, long_poll_seconds=1, poll_error_backoff=0.05)
        broker.start()
        return broker

    def test_reply_without_signature_is_acked_and_dropped(self):
        transport = MagicMock()
        broker = self.make_broker(transport)
        broker.store.register("t1")
        transport.receive.side_effect = [
            [QueueMessage(body="stray", receipt_handle="rh-stray")],
            [QueueMessage(body="answer", receipt_handle="rh-1", attributes={"Signature": "t1"})],
        ]
        broker._ensure_polling()
        self.assertEqual(broker.store.await_reply("t1", 2), "answer")
        transport.delete_message.assert_any_call("memory://rq", "rh-stray")
        transport.delete_message.assert_any_call("memory://rq", "rh-1")
        broker.shutdown()

    def test_poll_error_is_logged_and_polling_continues(self):
        transport = MagicMock()
        broker = self.make_broker(transport)
        broker.store.register("t1")
        transport.receive.side_effect = [
            PollError("throttled"),
            [QueueMessage(body="answer", receipt_handle="rh-1", attributes={"Signature": "t1"})],
        ]
        with self.assertLogs("reply_bus.response_broker", level="ERROR") as logs:
            broker._ensure_polling()
            self.assertEqual(broker.store.await_reply("t1", 2), "answer")
        self.assertIn("throttled", "\n".join(logs.output))
        broker.shutdown()

    def test_reply_is_acked_before_it_is_published(self):
        transport = MagicMock()
        broker = self.make_broker(transport)
        broker.store.register("t1")
        order = []
        transport.delete_message.side_effect = lambda url, handle: order.append("ack")
        original_publish = broker.store.publish

        def publish(token, body):
            order.append("publish")
            return original_publish(token, body)

        broker.store.publish = publish
        transport.receive.side_effect = [
            [QueueMessage(body="answer", receipt_handle="rh-1", attributes={"Signature": "t1"})],
        ]
        broker._ensure_polling()
        self.assertEqual(broker.store.await_reply("t1", 2), "answer")
        self.assertEqual(order, ["ack", "publish"])
        broker.shutdown()
