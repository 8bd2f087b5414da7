def order_line_to_dict(line) -> dict:
    return {
        "product_id": line.product_id,
        "product_name": line.product_name,
        "quantity": line.quantity,
        "price": str(line.unit_price),
    }


def order_to_dict(order) -> dict:
    return {
        "id": order.pk,
        "user_id": order.user_id,
        "order_items": [order_line_to_dict(l) for l in order.lines.all()],
        "subtotal": str(order.subtotal),
        "delivery_fee": str(order.delivery_fee),
        "discount_code": order.discount_code,
        "discount_amount": str(order.discount_amount),
        "total": str(order.total),
        "state": order.state,
        "city": order.city,
        "address": order.address,
        "phone": order.phone,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
        "payment_reference": order.payment_reference,
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }
