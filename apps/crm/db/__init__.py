"""
Database models.

Every table shares the declarative Base from core.database; importing this
package registers them all.
"""

from . import models, crm_models, offer_models, supplier_models, kalkia_models, email_models  # noqa: F401
