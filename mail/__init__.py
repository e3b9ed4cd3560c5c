"""mail/ -- Transactional email for the marketplace API.

Layer rule: mail/ may import core/ and the plain data types in auth.models /
auth.errors. auth/ never imports mail/; the service only knows the
send_welcome / send_password_reset interface.
"""
