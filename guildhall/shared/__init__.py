"""Configuration, database setup and errors shared by the bot and the API."""
