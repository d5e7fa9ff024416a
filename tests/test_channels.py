import queue
import unittest

from channels import Broadcast, LatestValue


class TestLatestValue(unittest.TestCase):
    def test_publish_replaces_value(self):
        cell = LatestValue(1)
        self.assertEqual(cell.get(), 1)
        cell.publish(2)
        self.assertEqual(cell.get(), 2)


class TestBroadcast(unittest.TestCase):
    def test_each_subscriber_receives(self):
        channel = Broadcast()
        a = channel.subscribe()
        b = channel.subscribe()
        channel.publish("x")

        self.assertEqual(a.get_nowait(), "x")
        self.assertEqual(b.get_nowait(), "x")

    def test_full_queue_drops_oldest(self):
        channel = Broadcast()
        q = channel.subscribe(maxsize=2)
        for item in (1, 2, 3):
            channel.publish(item)

        self.assertEqual(q.get_nowait(), 2)
        self.assertEqual(q.get_nowait(), 3)
        with self.assertRaises(queue.Empty):
            q.get_nowait()

    def test_unsubscribe_stops_delivery(self):
        channel = Broadcast()
        q = channel.subscribe()
        channel.unsubscribe(q)
        channel.publish(1)

        self.assertTrue(q.empty())
        self.assertEqual(len(channel), 0)

    def test_subscriber_limit(self):
        channel = Broadcast(max_subscribers=1)
        channel.subscribe()
        with self.assertRaises(RuntimeError):
            channel.subscribe()


if __name__ == "__main__":
    unittest.main()
