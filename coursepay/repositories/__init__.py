"""Explicit data access, one repository per aggregate, bound to a request-scoped session."""

from coursepay.repositories.cart_repository import CartRepository
from coursepay.repositories.catalog_repository import CatalogRepository
from coursepay.repositories.order_repository import OrderRepository
from coursepay.repositories.payment_repository import PaymentRepository
from coursepay.repositories.secure_link_repository import SecureLinkRepository
from coursepay.repositories.idempotency_repository import IdempotencyRepository
