"""
MongoDB access layer: relational-style query API over motor, relation
registry, consistency hooks and index maintenance.
"""
