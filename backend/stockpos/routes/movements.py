# Overview: Flask API routes for stock movements; parses input and returns JSON responses.

"""Stock movement API routes with role enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import StockMovement
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..errors import ServiceError
from ..services import stock_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_movement
from ..decorators import require_auth, require_role


movements_bp = Blueprint("movements", __name__, url_prefix="/api")

MOVEMENT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "type",
        "quantity",
        "new_quantity",
        "reason",
        "reference_type",
        "reference_id",
        "notes",
        "occurred_at",
    }),
    required_on_create=frozenset({"type"}),
)


@movements_bp.post("/products/<int:product_id>/movements")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_movement_route(product_id: int):
    """
    Record an in / out / adjustment movement for a product.

    Available to: admin, manager
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=StockMovement,
            payload=payload,
            policy=MOVEMENT_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_movement(patch)

        movement = stock_service.apply_movement(
            product_id=product_id,
            movement_type=patch["type"],
            quantity=patch.get("quantity"),
            new_quantity=patch.get("new_quantity"),
            reason=patch.get("reason"),
            reference_type=patch.get("reference_type"),
            reference_id=patch.get("reference_id"),
            notes=patch.get("notes"),
            recorded_by_user_id=g.current_user.id,
            occurred_at=patch.get("occurred_at"),
        )
        return jsonify({
            "movement": movement.to_dict(),
            "stock_quantity": movement.resulting_quantity,
        }), 201

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.get("/products/<int:product_id>/movements")
@require_auth
def list_movements_route(product_id: int):
    """Paginated movement history for one product, newest first, with in/out totals."""
    try:
        result = stock_service.list_movements(
            product_id,
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        totals = stock_service.movement_totals(product_id)
        return jsonify({
            "items": [m.to_dict() for m in result["items"]],
            "total": result["total"],
            "page": result["page"],
            "limit": result["limit"],
            "totals": totals,
        }), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.get("/products/<int:product_id>/stock-audit")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def stock_audit_route(product_id: int):
    """Compare the product's stock cache against its movement ledger."""
    try:
        return jsonify(stock_service.reconcile_product(product_id)), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to audit stock")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.get("/movements/<int:movement_id>")
@require_auth
def get_movement_route(movement_id: int):
    try:
        movement = stock_service.get_movement(movement_id)
        return jsonify({"movement": movement.to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load stock movement")
        return jsonify({"error": "Internal server error"}), 500
