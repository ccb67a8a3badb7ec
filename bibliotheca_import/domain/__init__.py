"""
Domain layer - Core models, exceptions and repository interfaces of the importer.
"""
