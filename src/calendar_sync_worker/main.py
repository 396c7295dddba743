"""
Calendar Sync Worker - Main entry point.

This module serves as the entry point for the API server.
For the Celery worker, use: celery -A calendar_sync_worker.celery_app worker --beat
"""

from calendar_sync_worker.workers.api_server import app

# Export app for uvicorn
__all__ = ["app"]
