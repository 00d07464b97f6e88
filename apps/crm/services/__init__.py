"""
Business services.

Pricing, Kalkia and price analytics functions hold the calculation rules;
the remaining modules apply them to database rows.
"""
