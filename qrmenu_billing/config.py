import os
from datetime import timedelta

class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "DEV")
    DEBUG = os.getenv("FLASK_DEBUG", "0") == "1"

    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URI",
        "postgresql://postgres:postgres@db:5432/qrmenu_billing"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Add safe engine options for Neon
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,   # test connection before use
        "pool_recycle": 1800,    # recycle every 30min
        "pool_size": 5,          # keep small pool
        "max_overflow": 10       # allow bursts
    }

    # JWT sessions
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
    JWT_TOKEN_LOCATION = ["headers"]
    JWT_HEADER_NAME = "Authorization"
    JWT_HEADER_TYPE = "Bearer"
    JWT_ALGORITHM = "HS256"
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=8)

    # Razorpay
    RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
    RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
    RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET")
    RAZORPAY_CURRENCY = os.getenv("RAZORPAY_CURRENCY", "INR")

    # Scheduled sweep callers
    CRON_SECRET = os.getenv("CRON_SECRET")
    SERVICE_ROLE_KEY = os.getenv("SERVICE_ROLE_KEY")
    SYSTEM_ACTOR_EMAIL = os.getenv("SYSTEM_ACTOR_EMAIL", "system@addmenu.site")

    # Self-serve signup
    REGISTRATION_TTL_MINUTES = int(os.getenv("REGISTRATION_TTL_MINUTES", "30"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
