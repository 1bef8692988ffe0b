# backend/wsgi.py
from oudledger import create_app

app = create_app()
