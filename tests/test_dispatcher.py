"""
Tests for tradebridge/live/dispatcher.py
"""

import threading

from tradebridge.live.dispatcher import SubscriberChannel


class TestSubscriberChannel:

    def test_delivers_in_order(self):
        received = []
        done = threading.Event()

        def callback(message):
            received.append(message)
            if message == 3:
                done.set()

        channel = SubscriberChannel("sub-1", callback)
        for i in range(4):
            channel.publish(i)

        assert done.wait(2.0)
        channel.close()
        assert received == [0, 1, 2, 3]
        assert channel.delivered == 4

    def test_full_queue_drops_oldest(self):
        received = []
        entered = threading.Event()
        gate = threading.Event()

        def callback(message):
            received.append(message)
            entered.set()
            gate.wait(2.0)

        channel = SubscriberChannel("sub-2", callback, maxsize=2)
        channel.publish("a")
        assert entered.wait(2.0)

        for message in ("b", "c", "d"):
            assert channel.publish(message) is True

        assert channel.dropped == 1
        gate.set()
        channel.close()
        assert received == ["a", "c", "d"]

    def test_failing_callback_keeps_worker_alive(self):
        done = threading.Event()

        def callback(message):
            if message == "bad":
                raise ValueError("boom")
            done.set()

        channel = SubscriberChannel("sub-3", callback)
        channel.publish("bad")
        channel.publish("good")

        assert done.wait(2.0)
        channel.close()
        assert channel.failed == 1
        assert channel.delivered == 1

    def test_publish_after_close(self):
        channel = SubscriberChannel("sub-4", lambda m: None)
        channel.close()
        channel.close()

        assert channel.publish("late") is False
