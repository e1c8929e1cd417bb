"""Message Delivery Pipeline, read receipts, typing relay and history."""
