# storefront/blueprints/stats.py
from flask import Blueprint, jsonify

from ..services import StatisticsService
from ._helpers import date_arg
from .serializers import serialize_money_dict

stats_bp = Blueprint("stats", __name__, url_prefix="/api/stats")


@stats_bp.get("/payments")
def payment_stats():
    stats = StatisticsService.payment_stats(date_arg("start_date"), date_arg("end_date"))
    return jsonify(serialize_money_dict(stats))


@stats_bp.get("/orders")
def order_stats():
    stats = StatisticsService.order_stats(date_arg("start_date"), date_arg("end_date"))
    return jsonify(serialize_money_dict(stats))
