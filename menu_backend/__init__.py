"""
Backend package for the menu builder.

This package provides a FastAPI application on top of a record store that
runs against Postgres when a database URL is configured and against JSON
files on local disk otherwise.
"""
