# Overview: Flask extension instances for the local durable-storage database.

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
