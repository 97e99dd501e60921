"""
workflowbot - trigger and inspect GitHub Actions workflow runs from Telegram.
"""
__version__ = "0.1.0"
