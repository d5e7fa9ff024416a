import unittest

import numpy as np

from ring_buffer import RingBuffer


class TestRingBuffer(unittest.TestCase):
    def test_append_evicts_oldest(self):
        ring = RingBuffer(3)
        for v in (1.0, 2.0, 3.0, 4.0, 5.0):
            ring.append(v)

        self.assertEqual(len(ring), 3)
        np.testing.assert_array_equal(ring.values(), [3.0, 4.0, 5.0])
        self.assertEqual(ring.latest, 5.0)

    def test_last_returns_most_recent_in_order(self):
        ring = RingBuffer(4)
        for v in (1.0, 2.0, 3.0, 4.0, 5.0, 6.0):
            ring.append(v)

        np.testing.assert_array_equal(ring.last(2), [5.0, 6.0])
        np.testing.assert_array_equal(ring.last(10), [3.0, 4.0, 5.0, 6.0])
        self.assertEqual(len(ring.last(0)), 0)

    def test_values_are_copies(self):
        ring = RingBuffer(2)
        ring.append(1.0)
        out = ring.values()
        out[0] = 99.0
        self.assertEqual(ring.latest, 1.0)

    def test_clear_and_empty_latest(self):
        ring = RingBuffer(2)
        ring.append(1.0)
        ring.clear()
        self.assertEqual(len(ring), 0)
        with self.assertRaises(IndexError):
            _ = ring.latest

    def test_resize_keeps_newest(self):
        ring = RingBuffer(4)
        for v in (1.0, 2.0, 3.0, 4.0):
            ring.append(v)

        ring.resize(2)
        np.testing.assert_array_equal(ring.values(), [3.0, 4.0])
        ring.append(5.0)
        np.testing.assert_array_equal(ring.values(), [4.0, 5.0])

        ring.resize(5)
        ring.append(6.0)
        np.testing.assert_array_equal(ring.values(), [4.0, 5.0, 6.0])
        self.assertEqual(ring.capacity, 5)

    def test_invalid_capacity(self):
        with self.assertRaises(ValueError):
            RingBuffer(0)


if __name__ == "__main__":
    unittest.main()
