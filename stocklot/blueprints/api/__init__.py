from flask import Blueprint

api_bp = Blueprint('api', __name__, url_prefix='/api')

# Register sub-blueprints
from .stock_routes import stock_api_bp  # noqa: E402

api_bp.register_blueprint(stock_api_bp, url_prefix='/stock')
