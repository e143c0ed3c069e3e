"""
mail/ -- Outbound delivery of one-time codes.

Layer rule: mail/ imports only stdlib and core/. auth/ depends on the Mailer
protocol defined here, never on a concrete sender.
"""
