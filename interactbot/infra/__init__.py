# interactbot/infra/__init__.py
