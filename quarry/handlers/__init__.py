"""Background handlers for quarry.

Non-interactive work that runs the conversation loop outside a chat
request: the daily report and the scheduler that fires it.
"""
