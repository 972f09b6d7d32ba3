"""
AgriCare: AI Advisory Backend for Precision Agriculture

Registers farm fields and their sensors, and turns the latest soil readings
into crop recommendations, soil health summaries, management plans and
prescriptions through a multi-key AI dispatcher that rotates credentials
when a provider rate-limits or fails.
"""

__version__ = "0.1.0"
