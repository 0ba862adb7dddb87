"""Configuration, time zone helpers and refresh coordination."""
