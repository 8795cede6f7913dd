"""
assistant_memory: long-term personal memory subsystem for a conversational assistant.
"""

__version__ = "0.1.0"
