"""alerts/__init__.py"""
from .dispatcher import AlertDispatcher
from .models import AlertDetails, SecurityAlertPayload, SecurityAlertType

__all__ = ["AlertDispatcher", "AlertDetails", "SecurityAlertPayload", "SecurityAlertType"]
