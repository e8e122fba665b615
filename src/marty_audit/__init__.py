"""
Marty audit service.

Consumes domain events from the shared message bus, normalizes each one into a
compliance-tagged audit entry, persists it and answers search, trail and
export queries over the resulting audit trail.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
