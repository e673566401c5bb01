"""
Scheduling Domain

Patient recalls and appointment rescheduling.

Structure:
```
clinicflow/domain/scheduling/
├── __init__.py
├── errors.py               # Error taxonomy (display-ready messages + codes)
├── schemas.py              # Recall, slot and reschedule schemas
├── interfaces.py           # Store / notifier / analytics protocols
├── time_calculator.py      # Clinic timezone <-> UTC, daily slot grid
├── recall_policy.py        # Treatment intervals and due dates
├── availability_service.py # Suggested slots around a due date
├── booking.py              # Shared slot-claim and best-effort helpers
├── recall_service.py       # Recall state machine and booking protocol
├── reschedule_service.py   # Scoring, ranking and moving appointments
├── sweep.py                # Nightly snooze wake-up / expiry
├── repository.py           # SQLAlchemy implementation of the protocols
└── router.py               # HTTP endpoints
```

Booking never double-books a dentist: the only write path to a slot is the
conditional reserve/release in ``repository.py``, which also keeps
emergency-only slots out of reach.
"""
