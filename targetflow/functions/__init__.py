"""
Built-in function namespaces available to expression commands.
"""
