"""Authenticated proxy: public entry point for the mobile client."""
