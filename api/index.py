"""
Serverless entry point for the Taskflow API
"""
import os

# Serverless functions cannot run the in-process scheduler; cron calls
# /sla/cron/* instead.
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("REMINDER_POLL_INTERVAL", "0")
os.environ.setdefault("STATS_REFRESH_INTERVAL", "0")

from mangum import Mangum

from taskflow.infrastructure.database import init_database
from taskflow.main import app

# Lifespan is off in serverless, so the engine is created at import time
init_database()

handler = Mangum(app, lifespan="off")
