# src/medinet/services/__init__.py
"""Business logic services for the MediNet application."""
