import unittest
from datetime import date

from clinicflow.domain.scheduling.schemas import RecallRecord
from clinicflow.domain.scheduling.sweep import run_recall_sweep

from tests.fakes import InMemorySchedulingStore

TODAY = date(2024, 8, 1)


def recall(recall_id, status="suggested", due=date(2024, 7, 10), snooze_until=None, booked=None):
    return RecallRecord(
        id=recall_id,
        patientId="patient-1",
        dentistId="dentist-1",
        treatmentKey="cleaning_6m",
        treatmentLabel="Cleaning (6 months)",
        dueDate=due,
        status=status,
        snoozeUntil=snooze_until,
        bookedAppointmentId=booked,
    )


class RecallSweepTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = InMemorySchedulingStore()
        for record in (
            recall("due-snooze", "snoozed", snooze_until=TODAY),
            recall("later-snooze", "snoozed", snooze_until=date(2024, 8, 5)),
            recall("stale", due=date(2024, 6, 1)),
            recall("fresh", due=date(2024, 7, 10)),
            recall("booked", "booked", due=date(2024, 1, 1), booked="appt-1"),
        ):
            self.store.recalls[record.id] = record

    async def test_sweep(self) -> None:
        summary = await run_recall_sweep(self.store, TODAY, grace_days=30)

        self.assertEqual(summary, {"reactivated": 1, "expired": 1})
        statuses = {rid: r.status for rid, r in self.store.recalls.items()}
        self.assertEqual(
            statuses,
            {
                "due-snooze": "suggested",
                "later-snooze": "snoozed",
                "stale": "expired",
                "fresh": "suggested",
                "booked": "booked",
            },
        )
        self.assertIsNone(self.store.recalls["due-snooze"].snoozeUntil)

    async def test_grace_period_boundary(self) -> None:
        # due + 30 == today is not yet past the grace period
        self.store.recalls["edge"] = recall("edge", due=date(2024, 7, 2))

        await run_recall_sweep(self.store, TODAY, grace_days=30)

        self.assertEqual(self.store.recalls["edge"].status, "suggested")


if __name__ == "__main__":
    unittest.main()
