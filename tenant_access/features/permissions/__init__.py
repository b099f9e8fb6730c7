"""
Permission feature module.

Permission tables, the resolver that unions a user's custom, role and group
grants, and the tenant isolation rules applied on top of it.
"""
