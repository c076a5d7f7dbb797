"""catalog/ -- Resource store for categories and the products they own.

Layer rule: catalog/ imports only from core/. auth/ and api/ import from
catalog/, not the other way around.
"""
