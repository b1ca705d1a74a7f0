"""
storesync - cross-store synchronization and health engine.
"""

__version__ = "1.0.0"
