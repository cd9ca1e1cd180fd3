"""Notification messages and their dispatch through Microsoft Graph."""
