# interactbot/transport/__init__.py
