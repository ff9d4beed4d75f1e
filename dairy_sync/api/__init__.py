# dairy_sync/api/__init__.py
