import asyncio
import io
import json
import unittest
from unittest import mock

from graph_relay.config import RelayConfig, load_relay_config_from_env
from graph_relay.server import _load_frames, build_parser, main, simulate


def _lines(output: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in output.getvalue().splitlines()]


class SimulateTests(unittest.TestCase):
    def test_subscriber_sees_puts_and_replays(self):
        frames = [
            {"t": "graph.sub", "conn": "a", "path": "room"},
            {"t": "graph.put", "path": "room/m1", "value": {"msg": "hi", "time": 1}},
            {"t": "graph.replay", "path": "room"},
        ]
        output = io.StringIO()
        asyncio.run(simulate(frames, output))

        events = _lines(output)
        self.assertEqual([event["key"] for event in events], ["m1", "m1"])
        self.assertTrue(all(event["conn"] == "a" for event in events))

    def test_late_subscriber_gets_existing_children(self):
        frames = [
            {"t": "graph.put", "path": "room/m1", "value": 1},
            {"t": "graph.sub", "path": "room"},
        ]
        output = io.StringIO()
        graph = asyncio.run(simulate(frames, output))

        self.assertEqual(_lines(output), [{"t": "graph.event", "conn": "c1", "path": "room", "key": "m1", "value": 1}])
        self.assertEqual(graph.subscriber_count("room"), 1)

    def test_unsub_stops_delivery(self):
        frames = [
            {"t": "graph.sub", "path": "room"},
            {"t": "graph.unsub", "path": "room"},
            {"t": "graph.put", "path": "room/m1", "value": 1},
        ]
        output = io.StringIO()
        asyncio.run(simulate(frames, output))
        self.assertEqual(output.getvalue(), "")

    def test_unknown_frame_type_rejected(self):
        with self.assertRaises(ValueError):
            asyncio.run(simulate([{"t": "graph.nope"}], io.StringIO()))


class LoadFramesTests(unittest.TestCase):
    def test_json_lines(self):
        frames = _load_frames(io.StringIO('{"t": "graph.sub", "path": "a"}\n\n{"t": "graph.replay", "path": "a"}\n'))
        self.assertEqual(len(frames), 2)

    def test_json_array_and_single_object(self):
        self.assertEqual(len(_load_frames(io.StringIO('[{"t": "x"}, {"t": "y"}]'))), 2)
        self.assertEqual(_load_frames(io.StringIO('{"t": "x"}')), [{"t": "x"}])
        self.assertEqual(_load_frames(io.StringIO("  ")), [])


class CliTests(unittest.TestCase):
    def test_simulate_command_reads_file(self):
        frames = '[{"t": "graph.sub", "path": "r"}, {"t": "graph.put", "path": "r/k", "value": "v"}]'
        output = io.StringIO()
        with mock.patch("sys.stdin", io.StringIO(frames)):
            code = main(["simulate"], output=output)
        self.assertEqual(code, 0)
        self.assertEqual(_lines(output)[0]["value"], "v")

    def test_serve_defaults_come_from_env(self):
        with mock.patch.dict("os.environ", {"GRAPH_RELAY_PORT": "9999"}):
            args = build_parser().parse_args(["serve"])
        self.assertEqual(args.port, 9999)
        self.assertEqual(args.host, "127.0.0.1")


class RelayConfigTests(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict("os.environ", {}, clear=True):
            self.assertEqual(load_relay_config_from_env(), RelayConfig())

    def test_rejects_non_positive(self):
        with mock.patch.dict("os.environ", {"GRAPH_RELAY_PING_INTERVAL_S": "0"}):
            with self.assertRaises(ValueError):
                load_relay_config_from_env()

    def test_rejects_non_integer(self):
        with mock.patch.dict("os.environ", {"GRAPH_RELAY_MAX_MSG_SIZE": "big"}):
            with self.assertRaises(ValueError):
                load_relay_config_from_env()


if __name__ == "__main__":
    unittest.main()
