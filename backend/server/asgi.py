"""
ASGI entry point.

Used by uvicorn / gunicorn. The .env file is loaded before configuration
is read, so TRANSPORT and the reconnect settings may live there.
"""

from dotenv import load_dotenv

load_dotenv()

from config import AppConfig  # pylint: disable=wrong-import-position
from server.app import create_app  # pylint: disable=wrong-import-position

app = create_app(AppConfig.load_from_env())
