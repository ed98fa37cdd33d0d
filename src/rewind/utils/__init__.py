"""Helpers shared by the reporter and CLI: collector uploads and CI detection."""
