"""Business logic engines for the OOH booking system."""

from .authorization_tracker import AuthorizationTracker
from .criteria_evaluator import CriteriaEvaluator
from .inventory_allocator import InventoryAllocator

__all__ = ["AuthorizationTracker", "CriteriaEvaluator", "InventoryAllocator"]
