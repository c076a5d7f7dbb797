"""auth/ -- Authentication and authorization package for Stockroom.

Password hashing, token issuance, credential/session persistence, the
authentication service, and the access control evaluator.

Layer rule: auth/ imports from core/ and catalog/ (the evaluator reads
categories and products). It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
