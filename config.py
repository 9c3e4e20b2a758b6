import os

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Security/JWT
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "dev-refresh-secret-change-me")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "15"))
JWT_REFRESH_EXPIRES_DAYS = int(os.getenv("JWT_REFRESH_EXPIRES_DAYS", "7"))
VERIFICATION_TOKEN_TTL_HOURS = int(os.getenv("VERIFICATION_TOKEN_TTL_HOURS", "24"))

# Pricing (amounts in DT)
BASE_SHIPPING = float(os.getenv("BASE_SHIPPING", "8"))
FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD", "8000"))

# Links used in outgoing mail
SERVER_URL = os.getenv("SERVER_URL", "http://localhost:8000")
FRONT_SERVER_URL = os.getenv("FRONT_SERVER_URL")

# SMTP
MAILING_HOST = os.getenv("MAILING_HOST")
MAILING_PORT = int(os.getenv("MAILING_PORT", "587"))
MAILING_EMAIL = os.getenv("MAILING_EMAIL")
MAILING_PASSWORD = os.getenv("MAILING_PASSWORD")

DEFAULT_COUNTRY = os.getenv("DEFAULT_COUNTRY", "Tunisia")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8000"))
