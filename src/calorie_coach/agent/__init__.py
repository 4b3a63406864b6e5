"""
Conversational agent integration: completion webhook and transcript relay.

Keep import side-effect free.
"""
