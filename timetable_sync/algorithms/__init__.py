# Availability predicates and conflict detection
from . import availability
from . import conflicts

__all__ = ['availability', 'conflicts']
