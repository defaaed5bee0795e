"""
Housing cooperatives (bostadsrättsföreningar).

Scope:
- Searchable, paginated list with selectable page size
- Create / edit / delete (cooperative administrators)
- First-run setup for a cooperative administrator's own cooperative

The organisation number is the cooperative's key in the backend and cannot be
changed after creation.
"""
