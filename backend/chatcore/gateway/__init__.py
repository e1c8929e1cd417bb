"""Session hub and WebSocket gateway for the realtime channel."""
