"""Shared library code: logging, errors, resilience, money and date helpers."""
