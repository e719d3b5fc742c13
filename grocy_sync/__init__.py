"""
grocy-sync - Offline-capable shopping list sync for Grocy

Keeps a local SQLite cache of a Grocy server's shopping lists, downloads
only what changed since the last sync and pushes done/undone changes made
while offline.
"""

__version__ = "1.0.0"
__author__ = "grocy-sync contributors"
__description__ = "Offline-capable shopping list sync for Grocy"
