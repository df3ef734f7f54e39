"""Real-time chat: connection registry, presence, global and private channels."""
