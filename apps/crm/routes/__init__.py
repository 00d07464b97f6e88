"""Route modules for the Elta CRM API."""

from .auth import router as auth
from .customers import router as customers
from .leads import router as leads
from .offers import router as offers
from .kalkia import router as kalkia
from .suppliers import router as suppliers
from .price_analytics import router as price_analytics
from .pricing import router as pricing
from .inbox import router as inbox

__all__ = [
    "auth", "customers", "leads", "offers",
    "kalkia", "suppliers", "price_analytics", "pricing", "inbox"
]
