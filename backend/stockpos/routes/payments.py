# Overview: Flask API routes for customer credit payments; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..models import CreditPayment
from ..errors import ServiceError
from ..services import credit_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_credit_payment
from ..decorators import require_auth


payments_bp = Blueprint("payments", __name__, url_prefix="/api/customers")

CREDIT_PAYMENT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"amount_cents", "paid_at", "note"}),
    required_on_create=frozenset({"amount_cents"}),
)


@payments_bp.get("/credit-summary")
@require_auth
def credit_summary_route():
    """Outstanding credit across all active customers."""
    try:
        return jsonify(credit_service.credit_summary()), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load credit summary")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:customer_id>/payments")
@require_auth
def record_payment_route(customer_id: int):
    """
    Record a payment against the customer's outstanding balance.

    Overpayment floors the balance at zero.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=CreditPayment,
            payload=payload,
            policy=CREDIT_PAYMENT_POLICY,
            partial=False,
        )
        enforce_rules_credit_payment(patch)

        payment = credit_service.record_payment(
            customer_id=customer_id,
            amount_cents=patch["amount_cents"],
            paid_at=patch.get("paid_at"),
            note=patch.get("note"),
            recorded_by_user_id=g.current_user.id,
        )
        return jsonify({
            "payment": payment.to_dict(),
            "outstanding_balance_cents": payment.balance_after_cents,
        }), 201

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record credit payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:customer_id>/payments")
@require_auth
def list_payments_route(customer_id: int):
    try:
        result = credit_service.list_payments(
            customer_id,
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return jsonify({
            "items": [p.to_dict() for p in result["items"]],
            "total": result["total"],
            "page": result["page"],
            "limit": result["limit"],
        }), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list credit payments")
        return jsonify({"error": "Internal server error"}), 500
