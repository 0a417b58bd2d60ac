from flask import Flask
from dotenv import load_dotenv
from petshop.config import get_config_class
from petshop.logging import configure_logging
from petshop.errors import errors_bp
import logging
from models import db


def configure_celery(app):
    from celery_app import celery_app

    celery_app.conf.update(
        broker_url=app.config.get("CELERY_BROKER_URL", "memory://"),
        result_backend=app.config.get("CELERY_RESULT_BACKEND", "cache+memory://"),
        task_always_eager=bool(app.config.get("CELERY_TASK_ALWAYS_EAGER")),
    )
    app.extensions["celery"] = celery_app
    return celery_app


def create_app(config_object=None):
    """Application factory."""
    load_dotenv()
    app = Flask(__name__)

    if config_object is not None:
        app.config.from_object(config_object)
    else:
        app.config.from_object(get_config_class())

    configure_logging(app)
    configure_celery(app)

    app.register_blueprint(errors_bp)

    db.init_app(app)
    if app.config.get("DEBUG") or app.config.get("TESTING"):
        with app.app_context():
            db.create_all()
            logging.info("Tables created")

    return app
