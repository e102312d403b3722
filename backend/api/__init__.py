"""
ConfSync API Package.

HTTP status and control surface for a running sync engine.
Requires Python 3.11+.
"""

# Import app lazily to avoid circular imports
# Use: from api.main import app
