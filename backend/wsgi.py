# backend/wsgi.py
from creditdesk import create_app

app = create_app()
