"""
CBT Companion - email-verified access to a personal CBT assistant
"""

__version__ = "1.0.0"
