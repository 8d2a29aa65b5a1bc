"""
slotbooker - availability, pricing and booking workflow engine for timed video sessions.
"""

__version__ = "0.1.0"
