"""
Account settings: profile fields kept in the auth service's user metadata.
"""
