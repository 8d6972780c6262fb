"""
CSV import of medical items: parse and validate into a preview, then commit the valid rows.
"""
