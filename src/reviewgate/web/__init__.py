"""FastAPI query and event surface for reviewgate."""
