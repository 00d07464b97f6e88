"""
Elta CRM backend.

Leads, offers, Kalkia job costing, supplier pricing intelligence and the
shared mailbox inbox for a solar installation business.
"""

__version__ = "1.0.0"
