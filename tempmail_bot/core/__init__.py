"""Core infrastructure: configuration, logging, errors and retry policies."""
