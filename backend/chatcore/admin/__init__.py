"""Admin dashboard: user administration, moderation and the activity log."""
