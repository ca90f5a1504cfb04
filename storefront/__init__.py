import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .errors import APIError
from .models import db

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def create_app(test_config=None):
    load_dotenv()

    app = Flask(__name__)
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', 'sqlite:///storefront.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'devsecret')
    app.config['JWT_SECRET'] = os.getenv('JWT_SECRET') or app.config['SECRET_KEY']
    app.config['JWT_EXPIRES_HOURS'] = int(os.getenv('JWT_EXPIRES_HOURS', 24))
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(level=app.config['LOG_LEVEL'], format=LOG_FORMAT)
    db.init_app(app)
    register_blueprints(app)
    register_error_handlers(app)

    @app.route('/')
    def index():
        return jsonify(message='E-commerce API')

    with app.app_context():
        db.create_all()

    return app


def register_blueprints(app):
    from .addresses import addresses_bp
    from .admin import admin_bp
    from .auth import auth_bp
    from .cart import cart_bp
    from .catalog import categories_bp, products_bp
    from .orders import orders_bp
    from .users import users_bp

    for blueprint in (auth_bp, users_bp, products_bp, categories_bp,
                      cart_bp, addresses_bp, orders_bp, admin_bp):
        app.register_blueprint(blueprint)


def register_error_handlers(app):
    @app.errorhandler(APIError)
    def handle_api_error(err):
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(err):
        code = err.name.upper().replace(' ', '_')
        return jsonify(message=err.description, code=code), err.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(err):
        db.session.rollback()
        logger.exception('Unhandled error')
        return jsonify(message='Something went wrong!', code='SERVER_ERROR'), 500
