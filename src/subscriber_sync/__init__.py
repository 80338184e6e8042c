"""
Subscriber Sync - pulls subscriber lists from email service providers into the
local store and meters peak subscriber usage per billing period
"""

__version__ = "0.1.0"
