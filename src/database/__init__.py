"""Модуль работы с базой данных."""

from . import db
from .models import SCHEMA_VERSION, OrderRecord, PendingAction, PersistedSession

__all__ = ["db", "SCHEMA_VERSION", "OrderRecord", "PendingAction", "PersistedSession"]
