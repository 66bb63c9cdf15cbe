# backend/wsgi.py
from quickshop import create_app

app = create_app()
