"""
Public signing flow.

Borrowers and cooperative signers open `/sign/<token>` from the link in their
email. No portal session is needed; the token alone identifies the signer.
"""
