import json
import tempfile
import unittest
from pathlib import Path

from meshchat.auth import AuthSessionManager, Identity
from meshchat.errors import AuthError


class FakeProvider:
    def __init__(self):
        self.accounts = {}
        self._current = None
        self.recalled = None
        self.leave_error = None

    @property
    def current_identity(self):
        return self._current

    async def create(self, alias, secret):
        if alias in self.accounts:
            return {"err": "user_already_created"}
        self.accounts[alias] = (secret, f"pub-{alias}")
        return {"ok": 0, "pub": f"pub-{alias}"}

    async def authenticate(self, alias, secret):
        account = self.accounts.get(alias)
        if account is None or account[0] != secret:
            return {"err": "wrong_user_or_password"}
        self._current = Identity(public_key=account[1], alias=alias)
        return {"ok": 0}

    def leave(self):
        self._current = None
        if self.leave_error is not None:
            raise self.leave_error

    def recall(self, identity):
        self.recalled = identity
        self._current = identity


class AuthSessionManagerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.session_path = Path(self.tmpdir.name) / "session.json"
        self.provider = FakeProvider()
        self.auth = AuthSessionManager(self.provider, session_path=self.session_path)
        self.events = []
        self.auth.observe_session(self.events.append)

    async def test_register_does_not_log_in(self):
        await self.auth.register("alice", "secret123")
        self.assertIsNone(self.auth.session)
        self.assertEqual(self.events, [])

    async def test_register_duplicate_raises_reason(self):
        await self.auth.register("alice", "secret123")
        with self.assertRaises(AuthError) as ctx:
            await self.auth.register("alice", "secret123")
        self.assertEqual(ctx.exception.reason, "user_already_created")

    async def test_login_sets_session_and_stores_it(self):
        await self.auth.register("alice", "secret123")
        session = await self.auth.login("alice", "secret123")

        self.assertEqual((session.identity_handle, session.public_key), ("alice", "pub-alice"))
        self.assertIs(self.auth.session, session)
        self.assertEqual(len(self.events), 1)
        self.assertTrue(self.events[0].authenticated)
        self.assertEqual(json.loads(self.session_path.read_text()), {"alias": "alice", "pub": "pub-alice"})

    async def test_login_survives_unwritable_session_path(self):
        blocker = Path(self.tmpdir.name) / "blocker"
        blocker.write_text("not a directory")
        auth = AuthSessionManager(self.provider, session_path=blocker / "session.json")
        events = []
        auth.observe_session(events.append)
        await auth.register("alice", "secret123")

        with self.assertLogs("meshchat.auth", level="WARNING"):
            session = await auth.login("alice", "secret123")

        self.assertIs(auth.session, session)
        self.assertEqual(len(events), 1)
        self.assertTrue(events[0].authenticated)
        self.assertTrue(blocker.is_file())

    async def test_wrong_secret(self):
        await self.auth.register("alice", "secret123")
        with self.assertRaises(AuthError) as ctx:
            await self.auth.login("alice", "nope")
        self.assertEqual(ctx.exception.reason, "wrong_user_or_password")
        self.assertIsNone(self.auth.session)
        self.assertFalse(self.session_path.exists())

    async def test_logout_emits_and_clears_file(self):
        await self.auth.register("alice", "secret123")
        await self.auth.login("alice", "secret123")
        self.auth.logout()

        self.assertIsNone(self.auth.session)
        self.assertFalse(self.events[-1].authenticated)
        self.assertFalse(self.session_path.exists())

    async def test_logout_never_raises(self):
        await self.auth.register("alice", "secret123")
        await self.auth.login("alice", "secret123")
        self.provider.leave_error = RuntimeError("boom")
        with self.assertLogs("meshchat.auth", level="WARNING"):
            self.auth.logout()
        self.assertIsNone(self.auth.session)
        # no session: nothing to do
        self.auth.logout()

    async def test_restore_recalls_stored_identity(self):
        self.session_path.write_text(json.dumps({"alias": "bob", "pub": "pub-bob"}))
        session = self.auth.restore()

        self.assertEqual(session.public_key, "pub-bob")
        self.assertEqual(self.provider.recalled, Identity(public_key="pub-bob", alias="bob"))
        self.assertTrue(self.events[0].restored)

    async def test_restore_ignores_corrupt_file(self):
        self.session_path.write_text("{not json")
        self.assertIsNone(self.auth.restore())
        self.assertEqual(self.events, [])

    async def test_cancelled_observer_is_not_called(self):
        calls = []
        observation = self.auth.observe_session(calls.append)
        observation.cancel()
        observation.cancel()
        await self.auth.register("alice", "secret123")
        await self.auth.login("alice", "secret123")
        self.assertEqual(calls, [])


if __name__ == "__main__":
    unittest.main()
