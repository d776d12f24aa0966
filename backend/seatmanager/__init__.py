"""Application package for the library seat manager backend.

This package exposes the service, repository and model modules used by
the FastAPI application (`seatmanager.main:app`). Individual modules
contain the concrete implementations and documentation.
"""
