"""
Plain-dict views of ORM rows for response payloads.
"""
from db_models import Litter, Order, OrderItem, Puppy


def _iso(value):
    return value.isoformat() if value else None


def puppy_dict(p: Puppy) -> dict:
    return {
        "id": p.id,
        "litter_id": p.litter_id,
        "name": p.name,
        "gender": p.gender,
        "color": p.color,
        "is_available": p.is_available,
        "sold_to": p.sold_to,
    }


def order_dict(o: Order, items: list[OrderItem] | None = None) -> dict:
    data = {
        "id": o.id,
        "user_id": o.user_id,
        "status": o.status,
        "stripe_session_id": o.stripe_session_id,
        "subtotal_amount": o.subtotal_amount,
        "discount_amount": o.discount_amount,
        "total_amount": o.total_amount,
        "delivery_type": o.delivery_type,
        "delivery_option": o.delivery_option,
        "delivery_cost": o.delivery_cost,
        "delivery_zip_code": o.delivery_zip_code,
        "scheduling_deadline": _iso(o.scheduling_deadline),
        "created_at": _iso(o.created_at),
        "updated_at": _iso(o.updated_at),
    }
    if items is not None:
        data["items"] = [
            {"puppy_id": i.puppy_id, "price": i.price}
            for i in items
        ]
    return data


def litter_dict(l: Litter) -> dict:
    return {
        "id": l.id,
        "breeder_id": l.breeder_id,
        "name": l.name,
        "breed": l.breed,
        "description": l.description,
        "status": l.status,
        "price_per_male": l.price_per_male,
        "price_per_female": l.price_per_female,
        "quantity_discounts": l.quantity_discounts or [],
        "total_puppies": l.total_puppies,
        "available_puppies": l.available_puppies,
        "is_test_data": l.is_test_data,
        "stripe_product_id": l.stripe_product_id,
        "stripe_male_price_id": l.stripe_male_price_id,
        "stripe_female_price_id": l.stripe_female_price_id,
    }
