from coursepay.models.cart import Cart, CartItem
from coursepay.models.course import Course, CourseAttachment
from coursepay.models.order import Order, OrderItem
from coursepay.models.payment import Payment
from coursepay.models.secure_link import SecureLink
from coursepay.models.idempotency import IdempotencyRecord
from coursepay.models.order_event import OrderEvent

# add ALL models here
