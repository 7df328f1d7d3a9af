"""
Push-notification subscriptions: persisted state, lifecycle and inbound handlers.
"""
