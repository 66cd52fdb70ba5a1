"""
app.routers package

Routers are imported one by one in main.py, never from here: a router that
fails to import must not take the others down at startup.
"""
