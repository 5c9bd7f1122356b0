"""
Shared infrastructure: configuration, structured logging, error taxonomy.
"""
