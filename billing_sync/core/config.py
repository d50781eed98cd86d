import os

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./billing_sync.db")
RUN_MIGRATIONS = os.getenv("RUN_MIGRATIONS", "0")

# ✅ Security
SECRET_KEY = os.getenv("SECRET_KEY")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ✅ Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_WEBHOOK_TOLERANCE = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))

# ✅ Plans (price id -> plan tag + canonical price)
STRIPE_PRICE_ID_MONTHLY = os.getenv("STRIPE_PRICE_ID_MONTHLY")
STRIPE_PRICE_ID_YEARLY = os.getenv("STRIPE_PRICE_ID_YEARLY")
PLAN_PRICE_MONTHLY = os.getenv("PLAN_PRICE_MONTHLY", "15")
PLAN_PRICE_YEARLY = os.getenv("PLAN_PRICE_YEARLY", "150")
BILLING_CURRENCY = os.getenv("BILLING_CURRENCY", "EUR")
