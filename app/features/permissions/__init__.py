"""
Scoped permission grants.

Grants are global, customer-scoped or class-scoped; a global grant satisfies
any resource, a scoped grant only its own customer or class.
"""
