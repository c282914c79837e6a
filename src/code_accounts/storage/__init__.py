"""Persistence backends for account and slot metadata."""

from .base import ModelRepository
from .json_file import JsonFileRepository


__all__ = ["JsonFileRepository", "ModelRepository"]
