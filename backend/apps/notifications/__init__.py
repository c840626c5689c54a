"""In-app notifications for lifecycle and query events."""
