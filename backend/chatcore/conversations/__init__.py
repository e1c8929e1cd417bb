"""Conversation Membership Engine and its REST endpoints."""
