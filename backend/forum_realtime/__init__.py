"""Forum real-time service: presence, global chat and private chat over WebSockets."""
