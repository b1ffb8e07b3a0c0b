# Overview: Seller API routes; the reconciled dashboard for the effective identity.

from flask import Blueprint, g, jsonify

from ..decorators import require_admin_or_seller, require_auth
from ..services import metrics_service


seller_bp = Blueprint("seller", __name__, url_prefix="/api/seller")


@seller_bp.get("/dashboard")
@require_auth
@require_admin_or_seller
def dashboard_route():
    """
    Dashboard metrics with overrides applied.

    Uses the effective identity, so an admin holding an impersonation token
    sees exactly what the impersonated seller sees.
    """
    subject = g.current_user
    snapshot = metrics_service.dashboard(subject.id)
    return jsonify({
        "sellerId": subject.id,
        "isImpersonation": g.identity.is_impersonation,
        **snapshot.to_dict(),
    }), 200
