"""Private-messaging relay backend."""
