# backend/wsgi.py
# FLASK_APP entry point: python -m flask run --port 5001
from shiftpos import create_app

app = create_app()
