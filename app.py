import os
import logging
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase
from werkzeug.middleware.proxy_fix import ProxyFix

# Configure logging
logging.basicConfig(level=logging.DEBUG)

class Base(DeclarativeBase):
    pass

db = SQLAlchemy(model_class=Base)

# Create the app
app = Flask(__name__)
app.secret_key = os.environ.get("SESSION_SECRET", "dev-secret-key-change-in-production")
app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)

# Game settings
app.config['GOOGLE_MAPS_API_KEY'] = os.environ.get("GOOGLE_MAPS_API_KEY", "")
app.config['COVERAGE_TIMEOUT'] = float(os.environ.get("COVERAGE_TIMEOUT", 5))  # seconds per coverage check
app.config['COVERAGE_RADIUS'] = int(os.environ.get("COVERAGE_RADIUS", 100))  # meters
app.config['MAX_LOCATION_ATTEMPTS'] = int(os.environ.get("MAX_LOCATION_ATTEMPTS", 20))
app.config['ROUNDS_PER_GAME'] = int(os.environ.get("ROUNDS_PER_GAME", 5))
app.config['ROUND_TIME_LIMIT'] = int(os.environ.get("ROUND_TIME_LIMIT", 60))  # seconds

# Configure the database
app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///campusguessr.db")
app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
    "pool_recycle": 300,
    "pool_pre_ping": True,
}

# Initialize the app with the extension
db.init_app(app)

# Import routes after app creation to avoid circular imports
from routes import *

default_schools = [
    {'name': 'Simon Fraser University', 'acronym': 'SFU', 'badge': 'sfu', 'domain': 'sfu.ca'},
    {'name': 'University of British Columbia', 'acronym': 'UBC', 'badge': 'ubc', 'domain': 'ubc.ca'},
    {'name': 'University of Victoria', 'acronym': 'UVic', 'badge': 'uvic', 'domain': 'uvic.ca'},
    {'name': 'British Columbia Institute of Technology', 'acronym': 'BCIT', 'badge': 'bcit', 'domain': 'bcit.ca'},
    {'name': 'Langara College', 'acronym': 'Langara', 'badge': 'langara', 'domain': 'langara.ca'},
    {'name': 'Douglas College', 'acronym': 'Douglas', 'badge': 'douglas', 'domain': 'douglascollege.ca'},
    {'name': 'Vancouver Community College', 'acronym': 'VCC', 'badge': 'vcc', 'domain': 'vcc.ca'},
    {'name': "Queen's University", 'acronym': "Queen's", 'badge': 'queens', 'domain': 'queensu.ca'},
    {'name': 'University of Alberta', 'acronym': 'UofA', 'badge': 'uofa', 'domain': 'ualberta.ca'},
    {'name': 'University of Calgary', 'acronym': 'UofC', 'badge': 'ucalgary', 'domain': 'ucalgary.ca'},
    {'name': 'University of Toronto', 'acronym': 'UofT', 'badge': 'uoft', 'domain': 'utoronto.ca'},
    {'name': 'University of Waterloo', 'acronym': 'UofW', 'badge': 'waterloo', 'domain': 'uwaterloo.ca'},
    {'name': 'McGill University', 'acronym': 'McGill', 'badge': 'mcgill', 'domain': 'mcgill.ca'},
    {'name': 'McMaster University', 'acronym': 'Mac', 'badge': 'mcmaster', 'domain': 'mcmaster.ca'},
    {'name': 'Université de Montréal', 'acronym': 'UdeM', 'badge': 'udem', 'domain': 'umontreal.ca'},
    {'name': 'University of Guelph', 'acronym': 'Guelph', 'badge': 'guelph', 'domain': 'uoguelph.ca'},
]


def seed_schools():
    """Create the supported schools if none exist"""
    import models

    if models.School.query.count() == 0:
        for school_data in default_schools:
            db.session.add(models.School(**school_data))
        db.session.commit()
        logging.info("Default schools created")


with app.app_context():
    # Import models to ensure tables are created
    import models
    db.create_all()
    seed_schools()
