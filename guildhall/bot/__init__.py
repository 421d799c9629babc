"""Discord bot: gateway listeners, slash-command plugins and services."""
