from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import func

from dropcart.extensions import db
from dropcart.models import Item, Order, OrderLine, Review, User
from dropcart.services.access_policy import Actor
from dropcart.services.order_status import OrderStatus
from dropcart.utils.errors import BadRequestError, ForbiddenError, NotFoundError


def _rounded_average(total, count) -> float:
    if not count:
        return 0.0
    average = Decimal(int(total)) / Decimal(int(count))
    return float(average.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def review_stats_for(item_ids) -> dict[int, dict]:
    ids = [int(i) for i in item_ids]
    stats = {i: {"count": 0, "average_rating": 0.0} for i in ids}
    if not ids:
        return stats
    rows = (
        db.session.query(Review.item_id, func.count(Review.id), func.sum(Review.rating))
        .filter(Review.item_id.in_(ids))
        .group_by(Review.item_id)
        .all()
    )
    for item_id, count, total in rows:
        stats[int(item_id)] = {"count": int(count), "average_rating": _rounded_average(total or 0, count)}
    return stats


def review_stats(item_id: int) -> dict:
    return review_stats_for([item_id])[int(item_id)]


def has_purchased(user_id: int, item_id: int) -> bool:
    row = (
        db.session.query(OrderLine.id)
        .join(Order, Order.id == OrderLine.order_id)
        .filter(
            Order.user_id == int(user_id),
            OrderLine.item_id == int(item_id),
            Order.status != OrderStatus.CANCELLED,
        )
        .first()
    )
    return row is not None


def create_review(actor: Actor, item_id, rating, comment: str = "") -> Review:
    """Record a rating. Only buyers of the item may review; repeat reviews are allowed."""
    try:
        rating = int(rating)
    except (TypeError, ValueError):
        raise BadRequestError("rating must be an integer from 1 to 5", code="INVALID_RATING")
    if rating < 1 or rating > 5:
        raise BadRequestError("rating must be an integer from 1 to 5", code="INVALID_RATING")
    try:
        item = db.session.get(Item, int(item_id))
    except (TypeError, ValueError):
        item = None
    if item is None:
        raise NotFoundError("Item not found", code="ITEM_NOT_FOUND")
    if actor.user_id is None or not has_purchased(actor.user_id, item.id):
        raise ForbiddenError("Only customers who ordered this item can review it", code="REVIEW_REQUIRES_PURCHASE")

    review = Review(user_id=actor.user_id, item_id=item.id, rating=rating, comment=(comment or "").strip() or None)
    db.session.add(review)
    db.session.commit()
    current_app.logger.info("review_created review_id=%s item_id=%s user_id=%s rating=%s", review.id, item.id, actor.user_id, rating)
    return review


def list_reviews(item_id, *, limit: int = 50) -> dict:
    try:
        item = db.session.get(Item, int(item_id))
    except (TypeError, ValueError):
        item = None
    if item is None:
        raise NotFoundError("Item not found", code="ITEM_NOT_FOUND")
    rows = (
        db.session.query(Review, User.name)
        .join(User, User.id == Review.user_id)
        .filter(Review.item_id == item.id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .limit(max(1, min(int(limit or 50), 200)))
        .all()
    )
    return {
        "reviews": [{**review.to_dict(), "user": {"name": name or ""}} for review, name in rows],
        "stats": review_stats(item.id),
    }
