"""
Calorie Coach voice core: phone authentication, agent handoff and transcript
relay.
"""

__version__ = "0.1.0"
