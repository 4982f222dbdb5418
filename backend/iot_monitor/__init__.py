"""Application package for the IoT device monitoring backend.

This package exposes the service, repository and model modules used by
the FastAPI application in `iot_monitor.main`. Individual modules contain
the concrete implementations and documentation.
"""
