"""Conversation engine: messages, personas, context, sessions and the turn loop."""
