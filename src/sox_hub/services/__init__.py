"""
sox_hub.services

Service layer (transaction owners).

Responsibilities:
- Enforce workflow rules and invariants over the repositories.
- Commit or roll back; routers never touch transactions.
"""
