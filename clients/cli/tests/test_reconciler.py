import unittest

from meshchat.reconciler import Message, MessageReconciler, message_payload, new_message_id, parse_message


def _event(text: str, time_ms, user: str = "alice", pub: str = "pa") -> dict:
    return {"msg": text, "user": user, "pub": pub, "time": time_ms}


class ParseMessageTests(unittest.TestCase):
    def test_parses_wire_record(self):
        message = parse_message(_event("hi", 1000), "m1")
        self.assertEqual(message, Message(id="m1", text="hi", author_alias="alice", author_public_key="pa", timestamp_ms=1000))
        self.assertEqual(message.to_wire(), _event("hi", 1000))

    def test_malformed_records(self):
        malformed = (
            None,
            "text",
            {"time": 1},
            {"msg": "", "time": 1},
            {"msg": "x"},
            {"msg": "x", "time": "1"},
            {"msg": "x", "time": True},
            {"msg": "x", "time": float("inf")},
            {"msg": "x", "time": float("nan")},
        )
        for value in malformed:
            with self.subTest(value=value):
                self.assertIsNone(parse_message(value, "m1"))

    def test_missing_author_fields_default_to_empty(self):
        message = parse_message({"msg": "x", "time": 5.7}, "m1")
        self.assertEqual((message.author_alias, message.author_public_key, message.timestamp_ms), ("", "", 5))

    def test_payload_and_ids(self):
        self.assertEqual(message_payload("t", "a", "p", 3), {"msg": "t", "user": "a", "pub": "p", "time": 3})
        self.assertNotEqual(new_message_id(), new_message_id())
        self.assertNotIn("/", new_message_id())


class MessageReconcilerTests(unittest.TestCase):
    def test_duplicate_delivery_is_a_noop(self):
        room = MessageReconciler("global")
        self.assertTrue(room.on_event(_event("hello", 1000), "m1"))
        self.assertFalse(room.on_event(_event("hello", 1000), "m1"))
        self.assertEqual(len(room), 1)
        self.assertIn("m1", room)

    def test_first_delivery_wins(self):
        room = MessageReconciler("global")
        room.on_event(_event("first", 1000), "m1")
        room.on_event(_event("second", 2000), "m1")
        self.assertEqual([m.text for m in room.messages()], ["first"])

    def test_newest_first_regardless_of_arrival(self):
        room = MessageReconciler("global")
        room.on_event(_event("older", 1000), "m2")
        room.on_event(_event("newer", 2000), "m1")
        room.on_event(_event("middle", 1500), "m3")
        self.assertEqual([m.id for m in room.messages()], ["m1", "m3", "m2"])
        self.assertEqual(room.latest().id, "m1")

    def test_equal_timestamps_ordered_by_id(self):
        forward = MessageReconciler("r")
        backward = MessageReconciler("r")
        for key in ("b", "a", "c"):
            forward.on_event(_event(key, 1000), key)
        for key in ("c", "a", "b"):
            backward.on_event(_event(key, 1000), key)
        self.assertEqual([m.id for m in forward.messages()], ["a", "b", "c"])
        self.assertEqual(forward.messages(), backward.messages())

    def test_tombstones_and_malformed_events_are_ignored(self):
        room = MessageReconciler("r")
        self.assertFalse(room.on_event(None, "m1"))
        self.assertFalse(room.on_event({"msg": "no time"}, "m2"))
        self.assertEqual(room.messages(), ())
        # a later valid record under the same key is still accepted
        self.assertTrue(room.on_event(_event("ok", 1), "m1"))

    def test_non_finite_time_is_dropped(self):
        room = MessageReconciler("r")
        self.assertFalse(room.on_event({"msg": "x", "time": float("inf")}, "m1"))
        self.assertFalse(room.on_event({"msg": "x", "time": float("-inf")}, "m2"))
        self.assertFalse(room.on_event({"msg": "x", "time": float("nan")}, "m3"))
        self.assertEqual(room.messages(), ())
        self.assertTrue(room.on_event(_event("ok", 1), "m4"))

    def test_snapshots_are_stable(self):
        room = MessageReconciler("r")
        room.on_event(_event("one", 1), "m1")
        before = room.messages()
        room.on_event(_event("two", 2), "m2")
        self.assertEqual(len(before), 1)
        self.assertEqual(len(room.messages()), 2)

    def test_on_insert_called_once_per_new_message(self):
        inserted = []
        room = MessageReconciler("r", on_insert=inserted.append)
        room.on_event(_event("one", 1), "m1")
        room.on_event(_event("one", 1), "m1")
        room.on_event(None, "m2")
        self.assertEqual([m.id for m in inserted], ["m1"])

    def test_newer_than(self):
        room = MessageReconciler("r")
        room.on_event(_event("one", 1000), "m1")
        room.on_event(_event("two", 2000), "m2")
        self.assertEqual([m.id for m in room.newer_than(1000)], ["m2"])
        self.assertEqual(room.newer_than(5000), [])


if __name__ == "__main__":
    unittest.main()
