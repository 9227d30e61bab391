# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""Sales API routes with role enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import SaleLine
from ..models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLE_MANAGER
from ..errors import EmptySaleError, ServiceError, ValidationError
from ..services import sales_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_sale_line
from ..decorators import require_auth, require_role


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

SALE_LINE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"product_id", "product_name", "quantity", "unit_price_cents"}),
    required_on_create=frozenset({"product_id", "quantity", "unit_price_cents"}),
    # blank name falls back to the catalog name
    omit_if_blank=frozenset({"product_name"}),
)


def _validate_lines(payload: dict) -> list[dict]:
    lines = payload.get("lines")
    if not lines:
        raise EmptySaleError()
    if not isinstance(lines, list):
        raise ValidationError("lines must be a list")

    cleaned = []
    for i, raw in enumerate(lines, start=1):
        try:
            patch = validate_payload(
                model=SaleLine,
                payload=raw,
                policy=SALE_LINE_POLICY,
                partial=False,
            )
            enforce_rules_sale_line(patch)
        except ValidationError as e:
            raise ValidationError(f"Line {i}: {e}", details={"line": i}) from e
        cleaned.append(patch)
    return cleaned


@sales_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def create_sale_route():
    """
    Create and complete a sale in one step: validates stock, deducts every
    line and records the sale atomically.

    Available to: admin, cashier
    """
    payload = request.get_json(silent=True) or {}

    try:
        lines = _validate_lines(payload)
        sale = sales_service.create_sale(lines, g.current_user)
        return jsonify({"sale": sale.to_dict()}), 201

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def list_sales_route():
    """
    Paginated sales, newest first.

    Available to: admin, manager
    """
    try:
        result = sales_service.list_sales(
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return jsonify({
            "items": [s.to_dict() for s in result["items"]],
            "total": result["total"],
            "page": result["page"],
            "limit": result["limit"],
        }), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/dashboard/today")
@require_auth
def today_stats_route():
    """Today's count and revenue; cashiers only see their own sales."""
    try:
        return jsonify(sales_service.today_stats_for_user(g.current_user)), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load today's sales stats")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/dashboard/recent")
@require_auth
def recent_sales_route():
    try:
        sales = sales_service.recent_sales(g.current_user, limit=request.args.get("limit"))
        return jsonify({"items": [s.to_dict() for s in sales]}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load recent sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def get_sale_route(sale_id: int):
    """
    Get sale with lines.

    Available to: admin, manager
    """
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500
