from .engine import allowed_transitions, apply_transition
from .registry import WORKFLOWS

__all__ = ["WORKFLOWS", "allowed_transitions", "apply_transition"]
