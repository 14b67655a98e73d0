"""Adapters: persistence, event log, cloud API clients, arq queue."""
