"""
PR Monitor API - HTTP access to the poller's commands.

Provides a FastAPI backend that runs the poll timer and serves the
persisted snapshot, badge and notification click handling.
"""
