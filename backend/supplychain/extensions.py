# Overview: Flask extension instances shared by models, services and the CLI.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Services hand committed rows back to callers (routes, signal receivers),
# so attributes must stay readable after commit without a new round trip.
db = SQLAlchemy(session_options={"expire_on_commit": False})
migrate = Migrate()
