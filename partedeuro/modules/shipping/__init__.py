"""
Shipping quote module.

- carriers/: one adapter per rate provider, registered by CarrierCode
- token_provider: CSRF session sources for Interparcel
Routing policy lives in partedeuro.services.shipping_service.
"""
