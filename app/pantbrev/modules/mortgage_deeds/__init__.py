"""
Mortgage deeds (pantbrev).

Scope:
- Filterable, paginated deed list and per-deed detail with audit timeline
- Create / edit forms with dynamic borrower and cooperative-signer rows
- Delete and send-for-signing

Borrower ownership must total 100% before anything is sent to the backend.
"""
