import unittest
from datetime import date, datetime, time, timedelta, timezone

from clinicflow.domain.scheduling.errors import NotFoundError
from clinicflow.domain.scheduling.reschedule_service import (
    SYSTEM_ERROR_MESSAGE,
    RescheduleService,
    rank_suggestions,
    score_slot,
)
from clinicflow.domain.scheduling.schemas import (
    AppointmentRef,
    RescheduleOptions,
    RescheduleSuggestion,
    ScoredSlot,
)

from tests.fakes import FakeAnalytics, FakeNotifier, InMemorySchedulingStore, fixed_clock

UTC = timezone.utc
ORIGINAL_DATE = date(2024, 7, 9)
ORIGINAL_TIME = time(10, 0)


def appointment(appointment_id, when, dentist_id="dentist-1", status="confirmed"):
    return AppointmentRef(
        id=appointment_id,
        patientId="patient-1",
        dentistId=dentist_id,
        appointmentDateTime=when,
        reason="Check-up",
        status=status,
    )


class ScoringTests(unittest.TestCase):
    def test_best_possible_slot(self) -> None:
        scored = score_slot(date(2024, 7, 10), "10:00", ORIGINAL_DATE, ORIGINAL_TIME, "d1", "d1")

        self.assertEqual(scored.score, 100)
        self.assertEqual(
            scored.reasons,
            ["Same time as your original appointment", "Same dentist", "Available soon"],
        )

    def test_time_of_day_tiers(self) -> None:
        cases = {"11:00": 95, "12:30": 80, "14:00": 65}
        for slot_time, expected in cases.items():
            with self.subTest(slot_time=slot_time):
                scored = score_slot(date(2024, 7, 10), slot_time, ORIGINAL_DATE, ORIGINAL_TIME, "d1", "d1")
                self.assertEqual(scored.score, expected)

    def test_days_until_slot(self) -> None:
        cases = {5: (95, "Within a week"), 9: (90, None), 12: (80, "More than 10 days later")}
        for days, (expected, reason) in cases.items():
            with self.subTest(days=days):
                scored = score_slot(
                    ORIGINAL_DATE + timedelta(days=days), "10:00", ORIGINAL_DATE, ORIGINAL_TIME, "d1", "d1"
                )
                self.assertEqual(scored.score, expected)
                if reason:
                    self.assertIn(reason, scored.reasons)

    def test_dentist_continuity(self) -> None:
        other_any = score_slot(date(2024, 7, 10), "10:00", ORIGINAL_DATE, ORIGINAL_TIME, "d2", "d1", same_dentist=False)
        self.assertEqual(other_any.score, 80)
        self.assertIn("Different dentist", other_any.reasons)

        other_pinned = score_slot(date(2024, 7, 10), "10:00", ORIGINAL_DATE, ORIGINAL_TIME, "d2", "d1")
        self.assertEqual(other_pinned.score, 85)
        self.assertNotIn("Different dentist", other_pinned.reasons)

    def test_worst_case_score(self) -> None:
        scored = score_slot(
            ORIGINAL_DATE + timedelta(days=30), "17:00", ORIGINAL_DATE, time(7, 0), "d2", "d1", same_dentist=False
        )
        self.assertEqual(scored.score, 25)
        self.assertEqual(
            scored.reasons, ["Different time of day", "Different dentist", "More than 10 days later"]
        )


class RankingTests(unittest.TestCase):
    def suggestion(self, day, slot_time, score):
        return RescheduleSuggestion(
            rank=1, date=day, dentistId="d1", slot=ScoredSlot(time=slot_time, score=score, reasons=[])
        )

    def test_ties_break_on_date_then_time(self) -> None:
        ranked = rank_suggestions(
            [
                self.suggestion(date(2024, 7, 12), "09:00", 90),
                self.suggestion(date(2024, 7, 10), "15:00", 90),
                self.suggestion(date(2024, 7, 10), "09:30", 90),
                self.suggestion(date(2024, 7, 15), "08:00", 95),
            ],
            min_score=60,
        )

        self.assertEqual(
            [(s.rank, s.date.day, s.slot.time) for s in ranked],
            [(1, 15, "08:00"), (2, 10, "09:30"), (3, 10, "15:00"), (4, 12, "09:00")],
        )

    def test_min_score_can_leave_nothing(self) -> None:
        self.assertEqual(rank_suggestions([self.suggestion(date(2024, 7, 10), "09:00", 59)], min_score=60), [])

    def test_max_results(self) -> None:
        candidates = [self.suggestion(date(2024, 7, 10 + i), "09:00", 80) for i in range(5)]
        self.assertEqual(len(rank_suggestions(candidates, min_score=60, max_results=2)), 2)


class RescheduleServiceTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = InMemorySchedulingStore()
        self.store.add_patient("patient-1", user_id="user-1")
        self.store.dentists = [{"id": "dentist-1", "name": "Ann Peeters"}, {"id": "dentist-2", "name": "Bram Claes"}]
        # 10:00 in Brussels
        self.store.add_appointment(appointment("appt-1", datetime(2024, 7, 9, 8, 0, tzinfo=UTC)))
        self.store.add_slot("dentist-1", ORIGINAL_DATE, "10:00", available=False, holder="appt-1")

        self.notifier = FakeNotifier()
        self.analytics = FakeAnalytics()
        self.service = RescheduleService(self.store, self.notifier, self.analytics, clock=fixed_clock)


class FindRescheduleOptionsTests(RescheduleServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store.add_slot("dentist-1", ORIGINAL_DATE, "11:00")  # same day, outside the window
        self.store.add_slot("dentist-1", date(2024, 7, 10), "10:00")
        self.store.add_slot("dentist-1", date(2024, 7, 10), "10:30", emergency=True)
        self.store.add_slot("dentist-1", date(2024, 7, 10), "11:00")
        self.store.add_slot("dentist-1", date(2024, 7, 12), "10:00")
        self.store.add_slot("dentist-1", date(2024, 7, 15), "12:30")
        self.store.add_slot("dentist-1", date(2024, 7, 20), "15:00")  # scores 45
        self.store.add_slot("dentist-1", date(2024, 7, 24), "10:00")  # past searchDays
        self.store.add_slot("dentist-2", date(2024, 7, 10), "10:00")

    async def test_ranked_options_for_same_dentist(self) -> None:
        options = await self.service.find_reschedule_options("appt-1")

        self.assertEqual(
            [(s.rank, s.date, s.slot.time, s.slot.score) for s in options],
            [
                (1, date(2024, 7, 10), "10:00", 100),
                (2, date(2024, 7, 12), "10:00", 100),
                (3, date(2024, 7, 10), "11:00", 95),
                (4, date(2024, 7, 15), "12:30", 75),
            ],
        )
        self.assertTrue(all(s.dentistId == "dentist-1" for s in options))
        self.assertIn("Similar time of day", options[2].slot.reasons)

    async def test_search_window_follows_the_original_date(self) -> None:
        await self.service.find_reschedule_options("appt-1")

        days = [day for _, day in self.store.generated]
        self.assertEqual(days[0], date(2024, 7, 10))
        self.assertEqual(days[-1], date(2024, 7, 23))

    async def test_any_dentist(self) -> None:
        options = await self.service.find_reschedule_options(
            "appt-1", RescheduleOptions(sameDentist=False)
        )

        other = [s for s in options if s.dentistId == "dentist-2"]
        self.assertEqual(len(other), 1)
        self.assertEqual(other[0].slot.score, 80)
        self.assertIn("Different dentist", other[0].slot.reasons)
        self.assertEqual(len(options), 5)

    async def test_min_score_and_max_results(self) -> None:
        strict = await self.service.find_reschedule_options("appt-1", RescheduleOptions(minScore=96))
        self.assertEqual(len(strict), 2)

        capped = await self.service.find_reschedule_options("appt-1", RescheduleOptions(maxResults=1))
        self.assertEqual([s.rank for s in capped], [1])

        next_day = await self.service.find_reschedule_options(
            "appt-1", RescheduleOptions(minScore=100, searchDays=1, reason="emergency")
        )
        self.assertEqual([(s.date, s.slot.time) for s in next_day], [(date(2024, 7, 10), "10:00")])

    async def test_suggestions_are_logged(self) -> None:
        options = await self.service.find_reschedule_options(
            "appt-1", RescheduleOptions(reason="dentist_cancelled")
        )

        self.assertEqual(self.store.suggestion_logs, [("appt-1", "dentist_cancelled", options)])

    async def test_unknown_appointment(self) -> None:
        with self.assertRaises(NotFoundError):
            await self.service.find_reschedule_options("missing")


class AcceptRescheduleTests(RescheduleServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store.add_slot("dentist-1", date(2024, 7, 10), "11:00")
        self.store.add_slot("dentist-2", date(2024, 7, 10), "11:00")

    async def test_moves_the_appointment(self) -> None:
        result = await self.service.accept_reschedule_suggestion("appt-1", date(2024, 7, 10), "11:00")

        self.assertTrue(result.success)
        self.assertIsNone(result.errorCode)
        moved = self.store.appointments["appt-1"]
        self.assertEqual(moved.appointmentDateTime, datetime(2024, 7, 10, 9, 0, tzinfo=UTC))
        self.assertEqual(moved.dentistId, "dentist-1")

        old = self.store.slot("dentist-1", ORIGINAL_DATE, "10:00")
        new = self.store.slot("dentist-1", date(2024, 7, 10), "11:00")
        self.assertTrue(old["isAvailable"])
        self.assertFalse(new["isAvailable"])
        self.assertEqual(new["appointmentId"], "appt-1")

        self.assertEqual(self.store.accepted, [("appt-1", datetime(2024, 7, 10, 9, 0, tzinfo=UTC))])
        self.assertEqual(self.notifier.sent[0]["title"], "Appointment Rescheduled")
        self.assertEqual(self.analytics.names(), ["appointment_rescheduled"])

    async def test_moves_to_another_dentist(self) -> None:
        result = await self.service.accept_reschedule_suggestion(
            "appt-1", date(2024, 7, 10), "11:00", dentist_id="dentist-2"
        )

        self.assertTrue(result.success)
        self.assertEqual(self.store.appointments["appt-1"].dentistId, "dentist-2")
        self.assertEqual(self.store.slot("dentist-2", date(2024, 7, 10), "11:00")["appointmentId"], "appt-1")
        self.assertTrue(self.store.slot("dentist-1", date(2024, 7, 10), "11:00")["isAvailable"])

    async def test_taken_slot_is_a_recoverable_result(self) -> None:
        self.store.add_slot("dentist-1", date(2024, 7, 10), "11:00", available=False, holder="appt-9")

        result = await self.service.accept_reschedule_suggestion("appt-1", date(2024, 7, 10), "11:00")

        self.assertFalse(result.success)
        self.assertEqual(result.errorCode, "slot_unavailable")
        self.assertEqual(result.error, "This time slot is no longer available. Please select another time.")
        self.assertEqual(
            self.store.appointments["appt-1"].appointmentDateTime, datetime(2024, 7, 9, 8, 0, tzinfo=UTC)
        )
        self.assertFalse(self.store.slot("dentist-1", ORIGINAL_DATE, "10:00")["isAvailable"])

    async def test_emergency_only_slot_is_refused(self) -> None:
        self.store.add_slot("dentist-1", date(2024, 7, 10), "08:00", emergency=True)

        result = await self.service.accept_reschedule_suggestion("appt-1", date(2024, 7, 10), "08:00")

        self.assertFalse(result.success)
        self.assertEqual(result.errorCode, "slot_unavailable")
        self.assertTrue(self.store.slot("dentist-1", date(2024, 7, 10), "08:00")["isAvailable"])
        self.assertEqual(
            self.store.appointments["appt-1"].appointmentDateTime, datetime(2024, 7, 9, 8, 0, tzinfo=UTC)
        )

    async def test_slot_inside_lead_time_is_refused(self) -> None:
        # The clock reads 09:00 clinic time on 10 January
        self.store.add_slot("dentist-1", date(2024, 1, 9), "10:00")
        self.store.add_slot("dentist-1", date(2024, 1, 10), "09:30")

        for slot_date, slot_time in ((date(2024, 1, 9), "10:00"), (date(2024, 1, 10), "09:30")):
            with self.subTest(slot_date=slot_date, slot_time=slot_time):
                result = await self.service.accept_reschedule_suggestion("appt-1", slot_date, slot_time)

                self.assertFalse(result.success)
                self.assertEqual(result.errorCode, "slot_unavailable")
                self.assertTrue(self.store.slot("dentist-1", slot_date, slot_time)["isAvailable"])

        self.assertEqual(self.store.reservations, [])
        self.assertEqual(self.analytics.events, [])

    async def test_unknown_appointment(self) -> None:
        result = await self.service.accept_reschedule_suggestion("missing", date(2024, 7, 10), "11:00")

        self.assertFalse(result.success)
        self.assertEqual(result.errorCode, "not_found")

    async def test_failed_update_releases_the_hold(self) -> None:
        self.store.update_appointment_error = RuntimeError("db down")

        result = await self.service.accept_reschedule_suggestion("appt-1", date(2024, 7, 10), "11:00")

        self.assertEqual(result.errorCode, "system_error")
        self.assertEqual(result.error, SYSTEM_ERROR_MESSAGE)
        hold_id = self.store.reservations[0][3]
        self.assertEqual(self.store.released, [hold_id])
        self.assertTrue(self.store.slot("dentist-1", date(2024, 7, 10), "11:00")["isAvailable"])
        self.assertFalse(self.store.slot("dentist-1", ORIGINAL_DATE, "10:00")["isAvailable"])
        self.assertEqual(self.analytics.events, [])

    async def test_invalid_time(self) -> None:
        result = await self.service.accept_reschedule_suggestion("appt-1", date(2024, 7, 10), "25:00")

        self.assertFalse(result.success)
        self.assertEqual(result.errorCode, "invalid_date")

    async def test_notification_failure_keeps_the_move(self) -> None:
        self.service.notifier = FakeNotifier(fail=True)

        result = await self.service.accept_reschedule_suggestion("appt-1", date(2024, 7, 10), "11:00")

        self.assertTrue(result.success)


class SendSuggestionsTests(RescheduleServiceTestCase):
    def suggestions(self):
        return [
            RescheduleSuggestion(
                rank=1, date=date(2024, 7, 10), dentistId="dentist-1",
                slot=ScoredSlot(time="10:00", score=100, reasons=["Same dentist"]),
            ),
            RescheduleSuggestion(
                rank=2, date=date(2024, 7, 12), dentistId="dentist-1",
                slot=ScoredSlot(time="11:00", score=95, reasons=[]),
            ),
        ]

    async def test_sends_one_notification_listing_the_options(self) -> None:
        result = await self.service.send_reschedule_suggestions("appt-1", self.suggestions())

        self.assertTrue(result.success)
        self.assertEqual(len(self.notifier.sent), 1)
        sent = self.notifier.sent[0]
        self.assertEqual(sent["severity"], "high")
        self.assertIn("1. Wednesday, July 10 at 10:00", sent["body"])
        self.assertIn("2. Friday, July 12 at 11:00", sent["body"])
        self.assertEqual(len(sent["metadata"]["suggestions"]), 2)

    async def test_unknown_appointment(self) -> None:
        result = await self.service.send_reschedule_suggestions("missing", self.suggestions())
        self.assertEqual(result.errorCode, "not_found")

    async def test_notifier_failure(self) -> None:
        self.service.notifier = FakeNotifier(fail=True)

        result = await self.service.send_reschedule_suggestions("appt-1", self.suggestions())

        self.assertFalse(result.success)
        self.assertEqual(result.errorCode, "system_error")


class DentistToolsTests(RescheduleServiceTestCase):
    async def test_bulk_reschedule(self) -> None:
        self.store.add_appointment(appointment("appt-2", datetime(2024, 7, 10, 12, 0, tzinfo=UTC)))
        self.store.add_appointment(appointment("appt-3", datetime(2024, 7, 10, 13, 0, tzinfo=UTC), status="cancelled"))
        self.store.add_appointment(appointment("appt-4", datetime(2024, 7, 20, 8, 0, tzinfo=UTC)))
        self.store.add_appointment(appointment("appt-5", datetime(2024, 7, 10, 8, 0, tzinfo=UTC), dentist_id="dentist-2"))
        self.store.add_slot("dentist-1", date(2024, 7, 15), "10:00")

        result = await self.service.bulk_reschedule_for_dentist(
            "dentist-1", date(2024, 7, 9), date(2024, 7, 10)
        )

        self.assertEqual(result.total, 2)
        self.assertEqual(result.processed, 2)
        self.assertEqual(sorted(result.suggestions), ["appt-1", "appt-2"])
        self.assertIn(("dentist-1", date(2024, 7, 30)), self.store.generated)
        self.assertIn("bulk_reschedule", self.analytics.names())

    async def test_alternative_dentists(self) -> None:
        self.store.dentists = [
            {"id": "dentist-1", "name": "Ann Peeters"},
            {"id": "dentist-2", "name": "Bram Claes"},
            {"id": "dentist-3", "name": "Chloe Maes"},
            {"id": "dentist-4", "name": "Dries Janssens"},
        ]
        day = date(2024, 7, 10)
        self.store.add_slot("dentist-1", day, "09:00")
        self.store.add_slot("dentist-2", day, "09:00")
        self.store.add_slot("dentist-2", day, "09:30")
        self.store.add_slot("dentist-2", day, "10:00", emergency=True)
        self.store.add_slot("dentist-3", day, "09:00", available=False, holder="appt-7")
        for slot_time in ("13:00", "13:30", "14:00"):
            self.store.add_slot("dentist-4", day, slot_time)

        alternatives = await self.service.find_alternative_dentists("dentist-1", day)

        self.assertEqual(
            [(a.dentistId, a.name, a.availableSlots) for a in alternatives],
            [("dentist-4", "Dries Janssens", 3), ("dentist-2", "Bram Claes", 2)],
        )


if __name__ == "__main__":
    unittest.main()
