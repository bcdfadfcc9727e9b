import os
from dotenv import load_dotenv

from safewatch import config as core

load_dotenv()

class Config:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./safewatch.db")

    # Notification Settings
    SMTP_SERVER = os.getenv("SMTP_SERVER", "smtp.gmail.com")
    SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
    SMTP_TIMEOUT = float(os.getenv("SMTP_TIMEOUT", core.SEND_TIMEOUT_SECONDS))
    EMAIL_FROM = os.getenv("EMAIL_FROM", "alert@safewatch.local")

    # Operator who receives every alert
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", core.ADMIN_EMAIL)
    ADMIN_NAME = os.getenv("ADMIN_NAME", core.ADMIN_NAME)

    # Dispatch / lifecycle
    DISPATCH_MAX_WORKERS = int(os.getenv("DISPATCH_MAX_WORKERS", core.DISPATCH_MAX_WORKERS))
    SEND_TIMEOUT_SECONDS = float(os.getenv("SEND_TIMEOUT_SECONDS", core.SEND_TIMEOUT_SECONDS))
    COUNTDOWN_SECONDS = float(os.getenv("COUNTDOWN_SECONDS", core.COUNTDOWN_SECONDS))

settings = Config()
