"""Shared helpers: logging, datetime, audit journal, auth and secrets."""
