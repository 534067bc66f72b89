"""Stagehand playbook convergence engine."""

from .dispatcher import PlaybookRunner
from .inventory import InventoryLoader
from .playbook import PlaybookLoader

__all__ = ["PlaybookRunner", "PlaybookLoader", "InventoryLoader"]
