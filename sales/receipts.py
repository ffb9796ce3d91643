from core.models import StoreProfile
from common.utils import store_timezone


def build_receipt(sale):
    """Structured receipt data for a printer or an HTML renderer.

    Built only from the transaction's own snapshots, so edits to products after
    the sale do not change a reprinted receipt.
    """
    store = StoreProfile.current()
    created_at = sale.created_at.astimezone(store_timezone())
    items = [
        {
            "name": item.product_name,
            "qty": item.quantity,
            "price": item.unit_price,
            "discount": item.discount,
            "subtotal": item.subtotal,
        }
        for item in sale.items.all()
    ]
    return {
        "store": {"name": store.name, "address": store.address, "phone": store.phone},
        "invoice_number": sale.invoice_number,
        "date": created_at.isoformat(),
        "cashier": sale.cashier.display_name,
        "customer": sale.customer.name if sale.customer_id else None,
        "items": items,
        "subtotal": sale.subtotal,
        "discount": sale.discount,
        "tax": sale.tax,
        "total": sale.total,
        "payment_method": sale.payment_method,
        "paid_amount": sale.paid_amount,
        "change_amount": sale.change_amount,
        "status": sale.status,
        "notes": sale.notes,
    }
