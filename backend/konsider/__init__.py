"""Application package for the Konsider software review backend.

This package exposes the service, repository and model modules used by
the FastAPI application in `main`, plus the `client` module for talking
to a running server. Individual modules contain the concrete
implementations and documentation.
"""
