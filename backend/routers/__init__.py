"""API routers, one module per resource. Mounted under /api in main.py."""
