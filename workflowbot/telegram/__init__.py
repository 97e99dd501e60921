"""
Telegram front-end for workflowbot.

A transport-neutral command handler plus long-polling and webhook transports
that feed it updates and deliver its replies.
"""
