import unittest

from sqlalchemy import select

from app.models.push_record import PushRecord
from core.model import Model
from core.monitor import scopes
from core.monitor.filters import JobFilter, WorkerFilter
from tests.unit.support import MonitorTestCase

SEND_MAIL = "app.jobs.SendMail"
BUILD_REPORT = "app.jobs.BuildReport"
CLEANUP = "app.jobs.Cleanup"


class FilterTestCase(MonitorTestCase):
    """Six pushes, one per interesting status, a minute apart."""

    async def asyncSetUp(self):
        await super().asyncSetUp()
        recorder = self.recorder
        self.ids = {}

        self.clock.set(12, 0)
        self.ids["waiting"] = await recorder.record_push("mailer", "p1", SEND_MAIL, {"to": "alice@example.com"})

        self.clock.set(12, 1)
        self.ids["in_progress"] = await recorder.record_push(
            "reports", "p2", BUILD_REPORT, {"month": 1}, {"trace_id": "trace-42"}
        )
        await recorder.begin_exec("reports", "p2", 1)

        self.clock.set(12, 2, 59)
        self.ids["success"] = await recorder.record_push("mailer", "p3", SEND_MAIL, {"to": "bob@example.com"})
        await recorder.begin_exec("mailer", "p3", 1)
        await recorder.end_exec("mailer", "p3")

        self.clock.set(12, 3)
        self.ids["buried"] = await recorder.record_push("mailer", "p4", CLEANUP)
        await recorder.begin_exec("mailer", "p4", 1)
        await recorder.end_exec_error("mailer", "p4", "disk full", False)

        self.clock.set(12, 4)
        self.ids["stopped"] = await recorder.record_push("reports", "p5", CLEANUP)
        await self.repository.stop_push(self.ids["stopped"])

        self.clock.set(12, 5)
        self.ids["retried"] = await recorder.record_push("mailer", "p6", SEND_MAIL, {"to": "carol@example.com"})
        await recorder.begin_exec("mailer", "p6", 1)
        await recorder.end_exec_error("mailer", "p6", "timeout", True)
        await recorder.begin_exec("mailer", "p6", 2)
        await recorder.end_exec("mailer", "p6")

    def job_filter(self, **kwargs):
        return JobFilter(self.env, **kwargs)

    async def found(self, job_filter):
        return {push.id for push in await job_filter.fetch(per_page=100)}

    def pick(self, *names):
        return {self.ids[name] for name in names}


class TestJobFilterScopes(FilterTestCase):
    async def test_each_scope(self):
        expected = {
            scopes.WAITING: self.pick("waiting"),
            scopes.IN_PROGRESS: self.pick("in_progress"),
            scopes.DONE: self.pick("success", "buried", "retried"),
            scopes.SUCCESS: self.pick("success", "retried"),
            scopes.BURIED: self.pick("buried"),
            scopes.FAILED: self.pick("buried", "retried"),
            scopes.STOPPED: self.pick("stopped"),
        }
        for name, ids in expected.items():
            with self.subTest(scope=name):
                self.assertEqual(await self.found(self.job_filter(is_=name)), ids)

    async def test_sql_scopes_agree_with_record_classification(self):
        async with await Model.get_session() as session:
            pushes = list((await session.execute(select(PushRecord))).scalars().all())

        for name in scopes.CLAUSES:
            expected = set()
            for push in pushes:
                if name in await self.repository.classify(push):
                    expected.add(push.id)
            with self.subTest(scope=name):
                self.assertEqual(await self.found(self.job_filter(is_=name)), expected)

    async def test_without_conditions_everything_matches(self):
        self.assertEqual(await self.found(self.job_filter()), set(self.ids.values()))
        self.assertEqual(await self.job_filter().count(), 6)

    async def test_failed_scope_is_hidden_unless_exposed(self):
        self.env.expose_has_fails = False
        job_filter = self.job_filter(is_=scopes.FAILED)

        self.assertNotIn(scopes.FAILED, job_filter.scope_list())
        self.assertEqual(await job_filter.fetch(), [])
        self.assertIn("is", job_filter.errors)


class TestJobFilterConditions(FilterTestCase):
    async def test_sender(self):
        self.assertEqual(
            await self.found(self.job_filter(sender="reports")),
            self.pick("in_progress", "stopped"),
        )

    async def test_sender_is_trimmed(self):
        job_filter = self.job_filter(sender="  reports ")
        self.assertEqual(await self.found(job_filter), self.pick("in_progress", "stopped"))
        self.assertEqual(job_filter.sender, "reports")

    async def test_class_matches_substring(self):
        self.assertEqual(
            await self.found(self.job_filter(class_="SendMail")),
            self.pick("waiting", "success", "retried"),
        )

    async def test_contains_searches_arguments_and_context(self):
        self.assertEqual(await self.found(self.job_filter(contains="alice")), self.pick("waiting"))
        self.assertEqual(await self.found(self.job_filter(contains="trace-42")), self.pick("in_progress"))

    async def test_contains_treats_wildcards_literally(self):
        self.assertEqual(await self.found(self.job_filter(contains="%")), set())
        self.assertEqual(await self.found(self.job_filter(contains="trace%42")), set())
        self.assertEqual(await self.found(self.job_filter(contains="trace_id")), self.pick("in_progress"))

    async def test_pushed_before_includes_whole_minute(self):
        self.assertEqual(
            await self.found(self.job_filter(pushed_before="2024-01-01T12:02")),
            self.pick("waiting", "in_progress", "success"),
        )

    async def test_pushed_after_starts_at_minute(self):
        self.assertEqual(
            await self.found(self.job_filter(pushed_after="2024-01-01T12:03")),
            self.pick("buried", "stopped", "retried"),
        )

    async def test_conditions_combine(self):
        job_filter = self.job_filter(
            sender="mailer",
            is_=scopes.DONE,
            pushed_after="2024-01-01T12:03",
        )
        self.assertEqual(await self.found(job_filter), self.pick("buried", "retried"))

    async def test_from_params(self):
        job_filter = JobFilter.from_params({"is": "stopped", "class": "Cleanup"}, env=self.env)
        self.assertEqual(await self.found(job_filter), self.pick("stopped"))


class TestJobFilterValidation(FilterTestCase):
    async def test_invalid_scope_matches_nothing(self):
        job_filter = self.job_filter(is_="nonsense")

        self.assertEqual(await job_filter.fetch(), [])
        self.assertEqual(await job_filter.count(), 0)
        self.assertEqual(job_filter.errors, {"is": ["Scope is invalid."]})

    async def test_malformed_datetime_matches_nothing(self):
        job_filter = self.job_filter(sender="mailer", pushed_after="yesterday")

        self.assertEqual(await job_filter.fetch(), [])
        self.assertIn("pushed_after", job_filter.errors)
        self.assertNotIn("sender", job_filter.errors)

    async def test_non_string_value_matches_nothing(self):
        job_filter = JobFilter.from_params({"sender": ["mailer", "reports"]}, env=self.env)

        self.assertEqual(await job_filter.fetch(), [])
        self.assertIn("sender", job_filter.errors)

    async def test_invalid_filter_has_no_groups(self):
        job_filter = self.job_filter(is_="nonsense")

        self.assertEqual(await job_filter.search_classes(), [])
        self.assertEqual(await job_filter.search_senders(), [])

    def test_parse_datetime(self):
        self.assertEqual(str(JobFilter.parse_datetime("2024-01-01T12:02")), "2024-01-01 12:02:00")
        self.assertEqual(str(JobFilter.parse_datetime("2024-01-01T12:02", is_end=True)), "2024-01-01 12:02:59")
        self.assertIsNone(JobFilter.parse_datetime("2024-01-01 12:02"))
        self.assertIsNone(JobFilter.parse_datetime("2024-13-01T12:02"))


class TestJobFilterListing(FilterTestCase):
    async def test_fetch_orders_newest_first_and_paginates(self):
        job_filter = self.job_filter()
        ordered = sorted(self.ids.values(), reverse=True)

        first_page = [push.id for push in await job_filter.fetch(page=1, per_page=4)]
        second_page = [push.id for push in await job_filter.fetch(page=2, per_page=4)]

        self.assertEqual(first_page, ordered[:4])
        self.assertEqual(second_page, ordered[4:])

    async def test_fetch_with_last_exec(self):
        rows = dict(
            (push.id, last_exec)
            for push, last_exec in await self.job_filter().fetch_with_last_exec(per_page=100)
        )

        self.assertIsNone(rows[self.ids["waiting"]])
        self.assertTrue(rows[self.ids["in_progress"]].is_open())
        self.assertEqual(rows[self.ids["retried"]].attempt, 2)
        self.assertEqual(
            scopes.status_label(await self.load_push(self.ids["buried"]), rows[self.ids["buried"]]),
            "Buried",
        )

    async def test_search_classes(self):
        self.assertEqual(
            await self.job_filter().search_classes(),
            [(BUILD_REPORT, 1), (CLEANUP, 2), (SEND_MAIL, 3)],
        )
        self.assertEqual(
            await self.job_filter(is_=scopes.DONE).search_classes(),
            [(CLEANUP, 1), (SEND_MAIL, 2)],
        )

    async def test_search_senders(self):
        self.assertEqual(await self.job_filter().search_senders(), [("mailer", 4), ("reports", 2)])

    async def test_groups_are_cached(self):
        self.assertEqual(await self.job_filter().search_senders(), [("mailer", 4), ("reports", 2)])

        await self.recorder.record_push("reports", "p7", BUILD_REPORT)
        self.assertEqual(await self.job_filter().search_senders(), [("mailer", 4), ("reports", 2)])

        # Other filter values use their own entry
        self.assertEqual(await self.job_filter(sender="reports").search_senders(), [("reports", 3)])

        self.cache_time[0] += self.env.cache_duration + 1
        self.assertEqual(await self.job_filter().search_senders(), [("mailer", 4), ("reports", 3)])

    async def test_class_and_sender_lists(self):
        self.assertEqual(await self.job_filter().class_list(), [BUILD_REPORT, CLEANUP, SEND_MAIL])
        self.assertEqual(await self.job_filter().sender_list(), ["mailer", "reports"])

    def test_cache_key_depends_on_values(self):
        self.assertEqual(self.job_filter(sender="a").cache_key(), self.job_filter(sender="a").cache_key())
        self.assertNotEqual(self.job_filter(sender="a").cache_key(), self.job_filter(sender="b").cache_key())


class TestWorkerFilter(MonitorTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.clock.set(13, 0)
        self.stale_id = await self.recorder.worker_start("mailer", "host-a", 1)
        self.finished_id = await self.recorder.worker_start("reports", "host-a", 2)
        await self.recorder.worker_stop("host-a", 2)

        self.clock.advance(30)
        self.active_id = await self.recorder.worker_start("mailer", "host-b", 3)

    async def ids(self, **kwargs):
        return [worker.id for worker in await WorkerFilter(self.env, **kwargs).fetch()]

    async def test_active_only(self):
        self.assertEqual(await self.ids(), [self.active_id])

    async def test_all_workers_newest_first(self):
        self.assertEqual(
            await self.ids(active_only=False),
            [self.active_id, self.finished_id, self.stale_id],
        )

    async def test_sender(self):
        self.assertEqual(await self.ids(sender="reports", active_only=False), [self.finished_id])
        self.assertEqual(await self.ids(sender="reports"), [])


if __name__ == "__main__":
    unittest.main()
