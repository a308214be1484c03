import threading
import unittest
from listening_proof.config import Settings
from listening_proof.engine import ListeningVerifier
from listening_proof.proof import generate_proof_artifact
from listening_proof.state import TrackStore

class FakeClock:
    def __init__(self, start=1_700_000_000_000):
        self.now = start
    def __call__(self):
        self.now += 1
        return self.now

def make_policy(**overrides):
    values = dict(
        POL_THRESHOLD=0.9,
        POL_CHEAT_GAP_SECONDS=5,
        POL_PER_SAMPLE_CAP_SECONDS=1.0,
        POL_CAP_TOLERANCE_SECONDS=0.5
    )
    values.update(overrides)
    return Settings(**values)

class TestListeningVerifier(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.verifier = ListeningVerifier(make_policy(), TrackStore(clock=self.clock))
        self.verdicts = []
        self.updates = []
        self.verifier.subscribe_verdict(self.verdicts.append)
        self.verifier.subscribe_progress(self.updates.append)

    def feed(self, track_id, positions, duration=100):
        for pos in positions:
            self.verifier.report_sample(track_id, pos, duration)

    def test_scenario_a_verifies_at_threshold(self):
        for pos in range(0, 96):
            self.verifier.report_sample("song", pos, 100)
            if pos < 90:
                self.assertFalse(self.verifier.is_verified("song"), f"verified early at {pos}")
                self.assertIsNone(self.verifier.proof_for("song"))
            if pos == 90:
                self.assertTrue(self.verifier.is_verified("song"))
                self.assertEqual(len(self.verdicts), 1)
                self.assertEqual(self.verdicts[0].listened_seconds, 90)

        self.assertEqual(len(self.verdicts), 1)
        verdict = self.verdicts[0]
        self.assertEqual(verdict.track_id, "song")
        self.assertEqual(verdict.duration_seconds, 100)
        self.assertIsNotNone(self.verifier.proof_for("song"))
        self.assertEqual(self.verifier.proof_for("song"), verdict.proof_artifact)

    def test_scenario_b_skip_disqualifies_lifecycle(self):
        self.feed("song", [0, 1, 2])
        self.assertFalse(self.updates[-1].cheat)
        self.feed("song", [50])
        self.assertTrue(self.updates[-1].cheat)
        self.feed("song", range(51, 100))

        self.assertFalse(self.verifier.is_verified("song"))
        self.assertEqual(self.verdicts, [])
        self.assertTrue(all(u.cheat for u in self.updates[3:]))
        self.assertIsNone(self.verifier.proof_for("song"))

    def test_scenario_c_unknown_duration(self):
        for pos in range(0, 500):
            self.verifier.report_sample("song", pos, 0)
        self.assertEqual(self.verifier.progress("song"), 0.0)
        self.assertFalse(self.verifier.is_verified("song"))
        self.assertEqual(self.verdicts, [])

    def test_scenario_d_interleaved_adapters_match_serial_stream(self):
        merged = [0, 0.5, 1.0, 1.0, 1.25, 2.0, 1.75, 3.0, 3.25, 4.0, 4.5, 5.5]
        serial = ListeningVerifier(make_policy(), TrackStore(clock=FakeClock()))
        for pos in merged:
            serial.report_sample("song", pos, 100)

        adapter_a = merged[0::2]
        adapter_b = merged[1::2]
        for a, b in zip(adapter_a, adapter_b):
            self.verifier.report_sample("song", a, 100)
            self.verifier.report_sample("song", b, 100)

        self.assertEqual(
            self.verifier.snapshot("song").listened_seconds,
            serial.snapshot("song").listened_seconds
        )

    def test_concurrent_adapters_keep_invariants(self):
        def adapter():
            for pos in range(0, 60):
                self.verifier.report_sample("song", pos * 0.5, 20)

        threads = [threading.Thread(target=adapter) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snap = self.verifier.snapshot("song")
        self.assertLessEqual(snap.listened_seconds, snap.duration_seconds)
        self.assertGreaterEqual(snap.listened_seconds, 0)
        self.assertLessEqual(len(self.verdicts), 1)

    def test_monotonic_and_clamped(self):
        previous = 0.0
        for pos in [x * 0.7 for x in range(0, 40)]:
            update = self.verifier.report_sample("short", pos, 10)
            self.assertGreaterEqual(update.listened_seconds, previous)
            self.assertLessEqual(update.listened_seconds, 10)
            previous = update.listened_seconds

    def test_credit_is_capped_per_sample(self):
        self.feed("song", [0, 1.4])
        self.assertEqual(self.verifier.snapshot("song").listened_seconds, 1.0)

    def test_delta_beyond_tolerance_credits_nothing(self):
        self.feed("song", [0, 3])
        snap = self.verifier.snapshot("song")
        self.assertEqual(snap.listened_seconds, 0)
        self.assertFalse(snap.cheat_flag)
        self.assertEqual(snap.last_position, 3)

    def test_first_sample_jump_is_not_cheat(self):
        self.feed("song", [30, 31])
        snap = self.verifier.snapshot("song")
        self.assertFalse(snap.cheat_flag)
        self.assertEqual(snap.listened_seconds, 1)

    def test_rewind_and_duplicates_do_not_decrement(self):
        self.feed("song", [0, 1, 2, 3])
        self.feed("song", [3, 3, 1])
        snap = self.verifier.snapshot("song")
        self.assertEqual(snap.listened_seconds, 3)
        self.assertEqual(snap.last_position, 1)

    def test_verified_track_is_frozen(self):
        self.feed("song", range(0, 10), duration=10)
        self.assertTrue(self.verifier.is_verified("song"))
        before = self.verifier.snapshot("song")

        update = self.verifier.report_sample("song", 80, 10)
        self.feed("song", range(10, 20), duration=10)

        after = self.verifier.snapshot("song")
        self.assertTrue(update.verified)
        self.assertFalse(after.cheat_flag)
        self.assertEqual(after.listened_seconds, before.listened_seconds)
        self.assertEqual(after.last_position, before.last_position)
        self.assertEqual(after.proof_artifact, before.proof_artifact)
        self.assertEqual(len(self.verdicts), 1)

    def test_progress_emitted_for_every_sample(self):
        self.feed("song", range(0, 10), duration=10)
        self.feed("song", [10, 11], duration=10)
        self.assertEqual(len(self.updates), 12)
        self.assertTrue(self.updates[-1].verified)

    def test_late_duration(self):
        self.feed("song", range(0, 5), duration=0)
        self.assertEqual(self.verifier.progress("song"), 0.0)
        self.verifier.report_sample("song", 5, 10)
        self.assertAlmostEqual(self.verifier.progress("song"), 0.5)

    def test_known_duration_is_not_shrunk(self):
        self.feed("song", range(0, 12), duration=300)
        before = self.verifier.progress("song")

        update = self.verifier.report_sample("song", 12, 12)

        self.assertEqual(update.duration_seconds, 300)
        self.assertAlmostEqual(self.verifier.progress("song"), before + 1 / 300)
        self.assertFalse(self.verifier.is_verified("song"))
        self.assertEqual(self.verdicts, [])

    def test_register_does_not_shrink_duration(self):
        self.feed("song", range(0, 5), duration=300)
        self.verifier.register("song", 5)
        self.assertEqual(self.verifier.snapshot("song").duration_seconds, 300)
        self.assertFalse(self.verifier.is_verified("song"))

    def test_malformed_samples_ignored(self):
        for args in [("song", float("nan"), 100), ("song", -1, 100),
                     ("song", 5, float("inf")), ("song", 5, -10),
                     (None, 5, 100), ("", 5, 100), ("song", None, 100),
                     ("song", "5", 100), ("song", True, 100)]:
            self.assertIsNone(self.verifier.report_sample(*args))
        self.assertNotIn("song", self.verifier.store)
        self.assertEqual(self.updates, [])

    def test_unknown_track_queries(self):
        self.assertFalse(self.verifier.is_verified("nope"))
        self.assertEqual(self.verifier.progress("nope"), 0.0)
        self.assertIsNone(self.verifier.proof_for("nope"))
        self.assertIsNone(self.verifier.snapshot("nope"))
        self.assertFalse(self.verifier.any_verified())
        self.assertEqual(self.verifier.verified_track_ids(), set())
        self.verifier.reset("nope")

    def test_numeric_and_string_ids_share_state(self):
        self.verifier.report_sample(7, 0, 100)
        self.verifier.report_sample("7", 1, 100)
        self.assertEqual(self.verifier.snapshot(7).listened_seconds, 1)

    def test_verified_queries(self):
        self.feed("a", range(0, 10), duration=10)
        self.feed("b", range(0, 3), duration=10)
        self.assertTrue(self.verifier.any_verified())
        self.assertEqual(self.verifier.verified_track_ids(), {"a"})

    def test_reset_starts_fresh_lifecycle(self):
        self.feed("song", [0, 1, 20])
        self.assertTrue(self.verifier.snapshot("song").cheat_flag)
        first_start = self.verifier.snapshot("song").started_at

        self.verifier.reset("song")
        self.assertNotIn("song", self.verifier.store)

        fresh = ListeningVerifier(make_policy(), TrackStore(clock=FakeClock()))
        for pos in range(0, 12):
            a = self.verifier.report_sample("song", pos, 10)
            b = fresh.report_sample("song", pos, 10)
            self.assertEqual(
                (a.listened_seconds, a.cheat, a.verified),
                (b.listened_seconds, b.cheat, b.verified)
            )
        self.assertNotEqual(self.verifier.snapshot("song").started_at, first_start)
        self.assertTrue(self.verifier.is_verified("song"))

    def test_reset_after_verified(self):
        self.feed("song", range(0, 10), duration=10)
        self.verifier.reset("song")
        self.assertFalse(self.verifier.is_verified("song"))
        self.assertIsNone(self.verifier.proof_for("song"))
        self.feed("song", range(0, 10), duration=10)
        self.assertEqual(len(self.verdicts), 2)
        self.assertNotEqual(self.verdicts[0].proof_artifact, self.verdicts[1].proof_artifact)

    def test_proof_matches_lifecycle_inputs(self):
        self.feed("song", range(0, 10), duration=10)
        snap = self.verifier.snapshot("song")
        expected = generate_proof_artifact("song", snap.listened_seconds, snap.started_at, True)
        self.assertEqual(self.verifier.proof_for("song"), expected)

    def test_failing_subscriber_does_not_block_others(self):
        def broken(_):
            raise RuntimeError("boom")
        verifier = ListeningVerifier(make_policy(), TrackStore(clock=FakeClock()))
        received = []
        verifier.subscribe_verdict(broken)
        verifier.subscribe_verdict(received.append)
        for pos in range(0, 10):
            verifier.report_sample("song", pos, 10)
        self.assertEqual(len(received), 1)
        self.assertTrue(verifier.is_verified("song"))

    def test_subscriber_may_reset_from_callback(self):
        verifier = ListeningVerifier(make_policy(), TrackStore(clock=FakeClock()))
        verifier.subscribe_verdict(lambda v: verifier.reset(v.track_id))
        for pos in range(0, 10):
            verifier.report_sample("song", pos, 10)
        self.assertNotIn("song", verifier.store)

    def test_unsubscribe(self):
        received = []
        unsubscribe = self.verifier.subscribe_progress(received.append)
        self.verifier.report_sample("song", 0, 10)
        unsubscribe()
        self.verifier.report_sample("song", 1, 10)
        self.assertEqual(len(received), 1)

    def test_register_creates_state_without_credit(self):
        self.assertTrue(self.verifier.register("song", 120))
        snap = self.verifier.snapshot("song")
        self.assertEqual(snap.duration_seconds, 120)
        self.assertEqual(snap.listened_seconds, 0)
        self.assertFalse(self.verifier.register("song", float("nan")))

    def test_custom_threshold(self):
        verifier = ListeningVerifier(make_policy(POL_THRESHOLD=0.5), TrackStore(clock=FakeClock()))
        for pos in range(0, 6):
            verifier.report_sample("song", pos, 10)
        self.assertTrue(verifier.is_verified("song"))

if __name__ == '__main__':
    unittest.main()
