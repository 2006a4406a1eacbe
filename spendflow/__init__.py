"""
SpendFlow -- personal-finance backend.

Recurring expenses, credit-card auto-payments, budgets, notifications and
billing webhook ingestion behind a FastAPI REST layer.
"""

__version__ = "0.1.0"
