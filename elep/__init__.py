"""
ELEP household electricity cost models.

Best-subset regression with hold-out validation over household survey data.
"""
