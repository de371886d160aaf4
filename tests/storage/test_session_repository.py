from datetime import timedelta

from campaign_assistant.errors import ConcurrentUpdateError, PersistenceError
from campaign_assistant.workflow_machine import apply_patch
from campaign_assistant.workflow_types import RecipientStats, WorkflowIntent, WorkflowPatch, WorkflowState
from tests.storage.base import CampaignStoreTestCase


class WorkflowSessionRepositoryTests(CampaignStoreTestCase):
    def test_create_session_starts_in_intent_capture(self) -> None:
        session = self._sessions.create_session("u1")
        self.assertFalse(session.resumed)
        self.assertEqual(0, session.version)
        self.assertEqual(WorkflowState.INTENT_CAPTURE, session.state.state)
        self.assertTrue(session.conversation_id.startswith("conv-"))
        self.assertEqual(1, self._checkpoints.count_checkpoints(session.id))

    def test_load_or_create_resumes_latest_session(self) -> None:
        created = self._sessions.load_or_create("u1")
        resumed = self._sessions.load_or_create("u1")
        self.assertEqual(created.id, resumed.id)
        self.assertTrue(resumed.resumed)

    def test_unknown_conversation_id_creates_fresh_session_under_it(self) -> None:
        self._sessions.load_or_create("u1")
        fresh = self._sessions.load_or_create("u1", "conv-explicit")
        self.assertFalse(fresh.resumed)
        self.assertEqual("conv-explicit", fresh.conversation_id)

    def test_sessions_are_scoped_per_user(self) -> None:
        mine = self._sessions.load_or_create("u1", "conv-shared")
        theirs = self._sessions.load_or_create("u2", "conv-shared")
        self.assertNotEqual(mine.id, theirs.id)

    def test_expired_sessions_are_not_resumed(self) -> None:
        old = self._sessions.create_session("u1")
        self._now = self._now + timedelta(days=31)
        current = self._sessions.load_or_create("u1")
        self.assertNotEqual(old.id, current.id)
        self.assertEqual([current.id], [s.id for s in self._sessions.list_sessions("u1")])

    def test_persist_writes_state_checkpoint_and_bumps_version(self) -> None:
        session = self._sessions.create_session("u1")
        patched = apply_patch(
            session.state,
            WorkflowPatch(
                state=WorkflowState.VALIDATION_REVIEW,
                intent=WorkflowIntent.NEWSLETTER,
                recipient_stats=RecipientStats(total=3, valid=2, invalid=1, duplicates=1),
                summary="Validation complete",
                context={"goal": "spring promo"},
            ),
        )
        persisted = self._sessions.persist(
            session.id,
            patched,
            expected_version=0,
            checkpoint_payload={"tool": "validate_recipients"},
        )
        self.assertEqual(1, persisted.version)
        self.assertEqual(patched, persisted.state)

        latest = self._checkpoints.latest_checkpoint(session.id)
        self.assertEqual("VALIDATION_REVIEW", latest["state"])
        self.assertEqual("validate_recipients", latest["payload"]["tool"])
        self.assertEqual(2, self._checkpoints.count_checkpoints(session.id))

    def test_stale_version_is_rejected(self) -> None:
        session = self._sessions.create_session("u1")
        self._sessions.persist(session.id, session.state, expected_version=0)
        with self.assertRaises(ConcurrentUpdateError):
            self._sessions.persist(session.id, session.state, expected_version=0)
        self.assertEqual(2, self._checkpoints.count_checkpoints(session.id))

    def test_persist_unknown_session(self) -> None:
        with self.assertRaises(PersistenceError):
            self._sessions.persist("missing", self._sessions.create_session("u1").state)

    def test_get_latest_returns_session_and_checkpoint(self) -> None:
        session = self._sessions.create_session("u1")
        latest = self._sessions.get_latest("u1")
        self.assertIsNotNone(latest)
        self.assertEqual(session.id, latest[0].id)
        self.assertEqual("INTENT_CAPTURE", latest[1]["state"])
        self.assertIsNone(self._sessions.get_latest("nobody"))

    def test_malformed_stored_state_is_coerced(self) -> None:
        session = self._sessions.create_session("u1")
        self._store.execute(
            "UPDATE workflow_sessions SET state = 'BOGUS', context_json = 'not json' WHERE id = ?",
            (session.id,),
        )
        self._store.commit()
        loaded = self._sessions.get_session(session.id)
        self.assertEqual(WorkflowState.INTENT_CAPTURE, loaded.state.state)
        self.assertEqual({}, loaded.state.context)
