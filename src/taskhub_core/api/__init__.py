"""HTTP and WebSocket interface for TaskHub Core."""
