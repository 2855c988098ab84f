"""
scribe - long-term chat memory through summarized turns.
"""

__version__ = "0.1.0"
__logo__ = "📜"
