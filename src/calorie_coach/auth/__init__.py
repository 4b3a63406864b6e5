"""
Caller authentication for the phone channel.
"""
