"""Tests for the pipeline event channel."""

import pytest

from edirouter.ingest.events import EventChannel


class TestSubscribe:
    def test_publish_reaches_all_subscribers(self):
        channel = EventChannel()
        a, b = [], []
        channel.subscribe(a.append)
        channel.subscribe(b.append)

        channel.publish("evt")

        assert a == ["evt"]
        assert b == ["evt"]

    def test_close_detaches(self):
        channel = EventChannel()
        seen = []
        sub = channel.subscribe(seen.append)
        sub.close()

        channel.publish("evt")

        assert seen == []
        assert sub.active is False
        assert channel.subscriber_count == 0

    def test_close_twice_is_harmless(self):
        channel = EventChannel()
        sub = channel.subscribe(print)
        sub.close()
        sub.close()
        assert channel.subscriber_count == 0

    def test_context_manager(self):
        channel = EventChannel()
        seen = []
        with channel.subscribe(seen.append):
            channel.publish(1)
        channel.publish(2)
        assert seen == [1]

    def test_capacity(self):
        channel = EventChannel(max_subscribers=2)
        channel.subscribe(print)
        channel.subscribe(print)
        with pytest.raises(RuntimeError, match="full"):
            channel.subscribe(print)

    def test_capacity_frees_on_close(self):
        channel = EventChannel(max_subscribers=1)
        channel.subscribe(print).close()
        channel.subscribe(print)
        assert channel.subscriber_count == 1


class TestPublish:
    def test_failing_subscriber_is_isolated(self, caplog):
        channel = EventChannel()
        seen = []

        def bad(event):
            raise ValueError("nope")

        channel.subscribe(bad)
        channel.subscribe(seen.append)

        channel.publish("evt")

        assert seen == ["evt"]
        assert "subscriber" in caplog.text

    def test_subscriber_may_unsubscribe_during_publish(self):
        channel = EventChannel()
        seen = []
        holder = {}

        def once(event):
            seen.append(event)
            holder["sub"].close()

        holder["sub"] = channel.subscribe(once)
        channel.publish(1)
        channel.publish(2)
        assert seen == [1]
