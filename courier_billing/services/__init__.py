"""
Domain services.

Blueprints stay thin: they parse the request, call one service function and
serialize the result. Services own validation, persistence and audit.
"""
