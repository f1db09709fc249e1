import unittest
from datetime import datetime

from app.models.exec_record import ExecRecord
from app.models.push_record import PushRecord
from core.monitor import scopes

PUSHED_AT = datetime(2024, 1, 1, 12, 0, 0)
FINISHED_AT = datetime(2024, 1, 1, 12, 1, 0)


def make_push(last_exec=None, stopped=False):
    return PushRecord(
        id=1,
        sender_name="mailer",
        job_uid="abc",
        job_class="app.jobs.SendMail",
        job_data="{}",
        pushed_at=PUSHED_AT,
        stopped_at=FINISHED_AT if stopped else None,
        first_exec_id=last_exec.id if last_exec else None,
        last_exec_id=last_exec.id if last_exec else None,
    )


def make_exec(finished=False, error=None, retry=None):
    return ExecRecord(
        id=10,
        push_id=1,
        attempt=1,
        reserved_at=PUSHED_AT,
        finished_at=FINISHED_AT if finished else None,
        error=error,
        retry=retry,
    )


class TestScopes(unittest.TestCase):
    def test_never_executed_push_is_only_waiting(self):
        """A push without attempts is waiting and nothing else."""
        push = make_push()
        self.assertEqual(scopes.scopes_of(push, None), {scopes.WAITING})

    def test_open_exec_is_in_progress(self):
        last_exec = make_exec()
        push = make_push(last_exec)

        self.assertEqual(scopes.scopes_of(push, last_exec), {scopes.IN_PROGRESS})

    def test_successful_exec_is_done_and_success(self):
        last_exec = make_exec(finished=True, retry=False)
        push = make_push(last_exec)

        self.assertEqual(scopes.scopes_of(push, last_exec), {scopes.DONE, scopes.SUCCESS})

    def test_failed_exec_without_retry_is_buried(self):
        last_exec = make_exec(finished=True, error="boom", retry=False)
        push = make_push(last_exec)

        self.assertEqual(
            scopes.scopes_of(push, last_exec, has_fails=True),
            {scopes.DONE, scopes.BURIED, scopes.FAILED},
        )

    def test_failed_exec_with_retry_is_waiting_again(self):
        last_exec = make_exec(finished=True, error="timeout", retry=True)
        push = make_push(last_exec)

        result = scopes.scopes_of(push, last_exec, has_fails=True)
        self.assertEqual(result, {scopes.WAITING, scopes.FAILED})
        self.assertNotIn(scopes.DONE, result)

    def test_stopped_overlaps_with_done(self):
        """Stopping does not hide the outcome of the last attempt."""
        last_exec = make_exec(finished=True, retry=False)
        push = make_push(last_exec, stopped=True)

        self.assertEqual(
            scopes.scopes_of(push, last_exec),
            {scopes.DONE, scopes.SUCCESS, scopes.STOPPED},
        )

    def test_stopped_push_is_never_waiting(self):
        push = make_push(stopped=True)
        self.assertFalse(scopes.is_waiting(push, None))

        last_exec = make_exec(finished=True, error="timeout", retry=True)
        push = make_push(last_exec, stopped=True)
        self.assertEqual(scopes.scopes_of(push, last_exec), {scopes.STOPPED})

    def test_success_can_have_earlier_failures(self):
        last_exec = make_exec(finished=True, retry=False)
        push = make_push(last_exec)

        self.assertEqual(
            scopes.scopes_of(push, last_exec, has_fails=True),
            {scopes.DONE, scopes.SUCCESS, scopes.FAILED},
        )

    def test_dangling_last_exec_matches_no_exec_scope(self):
        """A pointer to a missing exec row is neither waiting nor in progress."""
        push = make_push(make_exec())
        self.assertEqual(scopes.scopes_of(push, None), set())

    def test_status_label(self):
        self.assertEqual(scopes.status_label(make_push(), None), "Waiting")

        open_exec = make_exec()
        self.assertEqual(scopes.status_label(make_push(open_exec), open_exec), "In progress")

        buried = make_exec(finished=True, error="boom", retry=False)
        self.assertEqual(scopes.status_label(make_push(buried), buried), "Buried")

        success = make_exec(finished=True, retry=False)
        self.assertEqual(scopes.status_label(make_push(success), success), "Done successfully")
        self.assertEqual(scopes.status_label(make_push(success, stopped=True), success), "Stopped")

    def test_status_label_for_missing_last_exec(self):
        push = make_push(make_exec())
        self.assertEqual(scopes.status_label(push, None), scopes.UNKNOWN_LABEL)

    def test_unknown_scope_clause_matches_nothing(self):
        clause = scopes.scope_clause("nonsense")
        self.assertEqual(str(clause), "false")


if __name__ == "__main__":
    unittest.main()
