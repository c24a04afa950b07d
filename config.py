import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()

# Render provides DATABASE_URL, Supabase provides it too.
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    print("WARNING: DATABASE_URL not set. Falling back to local SQLite database.")
    DATABASE_URL = "sqlite:///./pos.db"

SECRET_KEY = os.getenv("SECRET_KEY", "change-me-pos-session-key")

# Bill numbers look like "NM 0042"
INVOICE_PREFIX = os.getenv("INVOICE_PREFIX", "NM ")

# Currency value of one redeemed loyalty point
LOYALTY_POINT_VALUE = Decimal(os.getenv("LOYALTY_POINT_VALUE", "1"))

ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
