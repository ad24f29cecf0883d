import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./carebridge.db")

# Firebase Configuration (ID tokens are issued by the auth collaborator)
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")

# Cloudflare R2 Configuration (assistance attachments)
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "carebridge")

# Payment gateway callbacks - unset means signatures are not checked (development only)
PAYMENT_GATEWAY_WEBHOOK_SECRET = os.getenv("PAYMENT_GATEWAY_WEBHOOK_SECRET")
PAYMENT_METHOD = os.getenv("PAYMENT_METHOD", "vnpay")

# Appointment times are wall-clock times at the clinic
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Asia/Ho_Chi_Minh")
SLOT_STEP_MINUTES = int(os.getenv("SLOT_STEP_MINUTES", "30"))

# Smallest amount a patient may ask for (smallest currency unit)
MIN_REQUESTED_AMOUNT = int(os.getenv("MIN_REQUESTED_AMOUNT", "100000"))
MAX_ATTACHMENTS = int(os.getenv("MAX_ATTACHMENTS", "5"))
MAX_ATTACHMENT_BYTES = int(os.getenv("MAX_ATTACHMENT_BYTES", str(5 * 1024 * 1024)))

# Rate limiting for booking and donation endpoints
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")

# Shared rate-limit counters; unset means counters stay in process memory
REDIS_URL = os.getenv("REDIS_URL")
