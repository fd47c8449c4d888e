"""Order lookups against Shopify and order tagging in ShipStation.

Credentials come from the environment. An unconfigured platform or any HTTP
failure raises `CommerceUnavailable`; "no such order" is a plain None.
"""
from enum import Enum
from typing import Any, Dict, Optional
import logging, os

import httpx

log = logging.getLogger(__name__)


class CommerceUnavailable(RuntimeError):
    pass


class OrderTag(str, Enum):
    HOLD = 'HOLD'
    PRIORITY = 'PRIORITY'
    URGENT = 'URGENT'
    REVIEW = 'REVIEW'


def _timeout() -> float:
    return float(os.getenv('COMMERCE_TIMEOUT', '15'))


def _request(method: str, url: str, platform: str, **kwargs) -> httpx.Response:
    try:
        with httpx.Client(timeout=_timeout()) as client:
            resp = client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        log.warning("commerce_request_failed", exc_info=e, extra={'provider': platform})
        raise CommerceUnavailable(f"{platform} unreachable: {type(e).__name__}") from e
    if resp.status_code >= 400:
        log.warning("commerce_http_error", extra={'provider': platform, 'status': resp.status_code})
        raise CommerceUnavailable(f"{platform}_http_{resp.status_code}")
    return resp


# --- Shopify ---

def _shopify_config():
    store = os.getenv('SHOPIFY_STORE_URL')
    token = os.getenv('SHOPIFY_ACCESS_TOKEN')
    if not store or not token:
        raise CommerceUnavailable("Shopify credentials not configured")
    store = store.replace('https://', '').replace('http://', '').rstrip('/')
    return store, token, os.getenv('SHOPIFY_API_VERSION', '2024-01')


def normalize_shopify_order(order: Dict[str, Any], order_number: str) -> Dict[str, Any]:
    customer = order.get('customer') or {}
    name = ' '.join(p for p in [customer.get('first_name'), customer.get('last_name')] if p) or None
    fulfillments = order.get('fulfillments') or []
    tracking = None
    if fulfillments:
        first = fulfillments[0]
        if first.get('tracking_number'):
            tracking = {
                'number': first.get('tracking_number'),
                'company': first.get('tracking_company'),
                'url': first.get('tracking_url'),
            }
    total = order.get('total_price')
    return {
        'order_number': str(order.get('order_number') or order.get('name') or order_number).lstrip('#'),
        'customer': {'name': name, 'email': order.get('email') or customer.get('email')},
        'items': [
            {
                'title': li.get('title'),
                'quantity': li.get('quantity'),
                'sku': li.get('sku'),
                'price': float(li['price']) if li.get('price') is not None else None,
            }
            for li in order.get('line_items') or []
        ],
        'fulfillment': {'status': order.get('fulfillment_status') or 'unfulfilled', 'tracking': tracking},
        'total_amount': float(total) if total is not None else None,
        'created_at': order.get('created_at'),
    }


def lookup_order(order_number: str) -> Optional[Dict[str, Any]]:
    store, token, version = _shopify_config()
    number = order_number.strip().lstrip('#')
    resp = _request(
        'GET',
        f"https://{store}/admin/api/{version}/orders.json",
        'shopify',
        params={'name': f"#{number}", 'status': 'any'},
        headers={'X-Shopify-Access-Token': token},
    )
    orders = resp.json().get('orders') or []
    if not orders:
        return None
    return normalize_shopify_order(orders[0], number)


# --- ShipStation ---

def _shipstation_config():
    key = os.getenv('SHIPSTATION_API_KEY')
    secret = os.getenv('SHIPSTATION_API_SECRET')
    if not key or not secret:
        raise CommerceUnavailable("ShipStation API credentials not configured")
    return os.getenv('SHIPSTATION_BASE_URL', 'https://ssapi.shipstation.com').rstrip('/'), httpx.BasicAuth(key, secret)


def find_shipstation_order(order_number: str) -> Optional[Dict[str, Any]]:
    base, auth = _shipstation_config()
    resp = _request('GET', f"{base}/orders", 'shipstation', params={'orderNumber': order_number}, auth=auth)
    orders = resp.json().get('orders') or []
    return orders[0] if orders else None


def _tag_call(action: str, order_number: str, tag: OrderTag) -> Optional[Dict[str, Any]]:
    order = find_shipstation_order(order_number)
    if order is None:
        return None
    base, auth = _shipstation_config()
    _request(
        'POST',
        f"{base}/orders/{action}",
        'shipstation',
        json={'orderId': order.get('orderId'), 'tagName': tag.value},
        auth=auth,
    )
    log.info("shipstation_tag_%s" % action, extra={'provider': 'shipstation', 'category': tag.value})
    return order


def tag_order(order_number: str, tag: OrderTag) -> Optional[Dict[str, Any]]:
    """Add `tag`; returns the ShipStation order, or None when it does not exist."""
    return _tag_call('addtag', order_number, tag)


def remove_tag(order_number: str, tag: OrderTag) -> Optional[Dict[str, Any]]:
    return _tag_call('removetag', order_number, tag)
