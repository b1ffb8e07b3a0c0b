# backend/wsgi.py
from shopconsole import create_app

app = create_app()
