"""
ServiceOS backend: tenant-isolated data access for the multi-tenant API.
"""
