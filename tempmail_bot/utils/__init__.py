"""Shared helpers: masking, validation and secret encryption."""
