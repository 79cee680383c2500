"""Factiony API: persistence coordination for the game cataloguing platform."""
