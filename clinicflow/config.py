import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinicflow.db")

# Clinic calendar - all civil times are interpreted in this zone
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Europe/Brussels")
CLINIC_DAY_START = os.getenv("CLINIC_DAY_START", "07:00")
CLINIC_DAY_END = os.getenv("CLINIC_DAY_END", "17:00")
SLOT_INTERVAL_MINUTES = int(os.getenv("SLOT_INTERVAL_MINUTES", "30"))
# Same-day bookings need at least this much notice
MIN_BOOKING_LEAD_MINUTES = int(os.getenv("MIN_BOOKING_LEAD_MINUTES", "60"))
# Comma separated HH:MM values kept back for emergencies when a day is generated
EMERGENCY_SLOT_TIMES = [
    t.strip() for t in os.getenv("EMERGENCY_SLOT_TIMES", "").split(",") if t.strip()
]
DEFAULT_APPOINTMENT_DURATION = int(os.getenv("DEFAULT_APPOINTMENT_DURATION", "60"))

# Recalls still "suggested" this many days after their due date are expired by the sweep
RECALL_EXPIRY_GRACE_DAYS = int(os.getenv("RECALL_EXPIRY_GRACE_DAYS", "30"))

# Analytics outbound queue (events beyond this are dropped, never awaited)
ANALYTICS_QUEUE_SIZE = int(os.getenv("ANALYTICS_QUEUE_SIZE", "1000"))

# Frontend base URL for deep links in notifications
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", FRONTEND_URL).split(",")
    if origin.strip()
]
