# src/core/__init__.py
"""
Доменный слой (Core Domain).
Геопозиция водителя, отслеживание, поездки и уведомления.
"""
