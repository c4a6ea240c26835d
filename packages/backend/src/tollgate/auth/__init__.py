"""Authentication and authorization.

Learn: Two kinds of caller reach the API:
1. Dashboard users → session token (cookie or Bearer) issued by the
   identity provider, role read from the membership table
2. SDKs/CI → API key (``tg_live_…``) in x-api-key or Authorization

Both resolve to one immutable AuthContext (context.py) that guards
(guard.py) and handlers scope every query by.
"""
