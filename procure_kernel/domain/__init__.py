"""
Pure domain layer: schema descriptors, filter compiler, predicates, row
conditions, capabilities, template renderer and workflow types.  No I/O.
"""
