import unittest
from datetime import date

from clinicflow.domain.scheduling.booking import BookingService, new_hold_token
from clinicflow.domain.scheduling.errors import SlotUnavailableError
from clinicflow.domain.scheduling.recall_service import RecallService
from clinicflow.domain.scheduling.reschedule_service import RescheduleService

from tests.fakes import FakeAnalytics, FakeNotifier, InMemorySchedulingStore, fixed_clock


class BookingServiceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = InMemorySchedulingStore()
        self.store.add_patient("patient-1", user_id="user-1")
        self.service = BookingService(self.store, FakeNotifier(), FakeAnalytics(), clock=fixed_clock)

    def test_both_services_share_the_booking_rules(self) -> None:
        self.assertTrue(issubclass(RecallService, BookingService))
        self.assertTrue(issubclass(RescheduleService, BookingService))

    def test_hold_tokens_are_unique(self) -> None:
        self.assertNotEqual(new_hold_token(), new_hold_token())

    async def test_hold_slot_claims_a_free_slot(self) -> None:
        self.store.add_slot("dentist-1", date(2024, 7, 10), "10:00")

        hold_id = await self.service._hold_slot("dentist-1", date(2024, 7, 10), "10:00")

        self.assertTrue(hold_id.startswith("hold-"))
        self.assertEqual(self.store.slot("dentist-1", date(2024, 7, 10), "10:00")["appointmentId"], hold_id)

    async def test_hold_slot_refuses_emergency_capacity(self) -> None:
        self.store.add_slot("dentist-1", date(2024, 7, 10), "08:00", emergency=True)

        with self.assertRaises(SlotUnavailableError):
            await self.service._hold_slot("dentist-1", date(2024, 7, 10), "08:00")

    async def test_hold_slot_refuses_slots_before_the_cutoff(self) -> None:
        self.store.add_slot("dentist-1", date(2024, 1, 10), "09:30")

        with self.assertRaises(SlotUnavailableError):
            await self.service._hold_slot("dentist-1", date(2024, 1, 10), "09:30")
        self.assertEqual(self.store.reservations, [])

    async def test_notification_and_analytics_failures_are_swallowed(self) -> None:
        self.service.notifier = FakeNotifier(fail=True)
        self.service.analytics = FakeAnalytics(fail=True)

        with self.assertLogs("clinicflow.domain.scheduling.booking", level="WARNING") as logs:
            await self.service._notify_patient("patient-1", "Hi", "Body", "recall")
            self.service._track("recall_created", "dentist-1", {})

        self.assertEqual(len(logs.output), 2)

    async def test_release_failure_is_logged(self) -> None:
        self.store.release_error = ConnectionError("release failed")

        with self.assertLogs("clinicflow.domain.scheduling.booking", level="ERROR"):
            await self.service._release_hold("hold-x")


if __name__ == "__main__":
    unittest.main()
