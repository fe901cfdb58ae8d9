import unittest

from meshchat.streams import EventStreamSubscriber, SubscriptionRegistry

from graph_relay.graph import MemoryGraph


class StreamTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.graph = MemoryGraph()
        self.subscriber = EventStreamSubscriber(self.graph)

    async def test_handle_cancel_is_idempotent_and_stops_delivery(self):
        seen = []
        handle = self.subscriber.subscribe("room", lambda value, key: seen.append(key))
        self.subscriber.put("room/m1", 1)
        await self.graph.idle()
        handle.cancel()
        handle.cancel()
        self.subscriber.put("room/m2", 2)
        await self.graph.idle()
        self.assertEqual(seen, ["m1"])
        self.assertEqual(self.graph.subscriber_count("room"), 0)

    async def test_registry_opens_each_name_once(self):
        registry = SubscriptionRegistry(self.subscriber)
        first = registry.open("friends", "~me/friends", lambda value, key: None)
        second = registry.open("friends", "~me/friends", lambda value, key: None)
        self.assertIs(first, second)
        self.assertEqual(len(registry), 1)
        self.assertTrue(registry.is_open("friends"))
        self.assertEqual(self.graph.subscriber_count("~me/friends"), 1)

    async def test_cancel_all(self):
        registry = SubscriptionRegistry(self.subscriber)
        seen = []
        registry.open("a", "a", lambda value, key: seen.append(key))
        registry.open("b", "b", lambda value, key: seen.append(key))
        self.subscriber.put("a/k", 1)
        self.assertEqual(registry.cancel_all(), 2)
        await self.graph.idle()
        self.assertEqual(seen, [])
        self.assertEqual(registry.names(), [])
        self.assertEqual(registry.cancel_all(), 0)

    async def test_cancel_single_name(self):
        registry = SubscriptionRegistry(self.subscriber)
        registry.open("a", "a", lambda value, key: None)
        registry.cancel("a")
        registry.cancel("missing")
        self.assertFalse(registry.is_open("a"))
        self.assertEqual(self.graph.subscriber_count("a"), 0)

    async def test_read_once(self):
        self.subscriber.put("~me/alias", "alice")
        self.assertEqual(await self.subscriber.read_once("~me/alias"), "alice")


if __name__ == "__main__":
    unittest.main()
