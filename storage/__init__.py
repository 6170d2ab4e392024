"""
Storage Package.

This package holds the persistence foundations shared by the
exposure compliance engine.

Modules:
- models/: Declarative base and mixins
- repositories/: Repository base class and exceptions
"""
