"""Domain enumerations for the repository layer.

String-valued enums use the str mixin so they serialize cleanly to JSON
and remain comparable to plain strings (Pydantic default behaviour).
"""

from enum import Enum


class EntityOperation(str, Enum):
    """Kind of mutation passed through the lifecycle pipeline."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
