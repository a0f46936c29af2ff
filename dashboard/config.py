"""
Dashboard Configuration
"""
import os

# Server defaults for `ratechange-agent serve`
HOST = os.getenv("DASHBOARD_HOST", "127.0.0.1")
PORT = int(os.getenv("DASHBOARD_PORT", "8000"))

# Application settings
APP_NAME = "Rate Change Notifications"
APP_VERSION = "1.0.0"
