"""Data access helpers behind the control endpoints.

Managers raise domain exceptions (``LookupError`` subclasses,
``RuntimeError``), never HTTP exceptions -- that translation is the
router's responsibility.
"""
