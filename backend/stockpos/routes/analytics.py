# Overview: Flask API routes for analytics; parses input and returns JSON responses.

"""
Analytics Routes

Dashboard figures, sales trends, top products, category mix, cashier
performance, customer segments, hourly pattern and inventory valuation.
Windowed endpoints accept ?period=7days|30days|12months or ?start=&end=.
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth
from ..errors import ServiceError
from ..services import analytics_service


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")


def _window() -> analytics_service.Window:
    return analytics_service.resolve_window(
        period=request.args.get("period"),
        start=request.args.get("start"),
        end=request.args.get("end"),
    )


def _windowed(name: str, compute):
    try:
        window = _window()
        return jsonify({"window": window.to_dict(), "data": compute(window)}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute %s", name)
        return jsonify({"error": "Internal server error"}), 500


@analytics_bp.get("/dashboard")
@require_auth
def dashboard_route():
    try:
        return jsonify(analytics_service.dashboard_stats()), 200
    except Exception:
        current_app.logger.exception("Failed to compute dashboard stats")
        return jsonify({"error": "Internal server error"}), 500


@analytics_bp.get("/sales-trends")
@require_auth
def sales_trends_route():
    return _windowed("sales trends", analytics_service.sales_trends)


@analytics_bp.get("/top-products")
@require_auth
def top_products_route():
    limit = request.args.get("limit")
    return _windowed(
        "top products",
        lambda window: analytics_service.top_products(window, limit=limit),
    )


@analytics_bp.get("/sales-by-category")
@require_auth
def sales_by_category_route():
    return _windowed("sales by category", analytics_service.sales_by_category)


@analytics_bp.get("/cashier-performance")
@require_auth
def cashier_performance_route():
    return _windowed("cashier performance", analytics_service.cashier_performance)


@analytics_bp.get("/customer-segments")
@require_auth
def customer_segments_route():
    try:
        return jsonify({"data": analytics_service.customer_segments()}), 200
    except Exception:
        current_app.logger.exception("Failed to compute customer segments")
        return jsonify({"error": "Internal server error"}), 500


@analytics_bp.get("/hourly-pattern")
@require_auth
def hourly_pattern_route():
    try:
        days = request.args.get("days", 1)
        return jsonify({"data": analytics_service.hourly_pattern(days)}), 200
    except Exception:
        current_app.logger.exception("Failed to compute hourly pattern")
        return jsonify({"error": "Internal server error"}), 500


@analytics_bp.get("/inventory-valuation")
@require_auth
def inventory_valuation_route():
    try:
        return jsonify(analytics_service.inventory_valuation()), 200
    except Exception:
        current_app.logger.exception("Failed to compute inventory valuation")
        return jsonify({"error": "Internal server error"}), 500
