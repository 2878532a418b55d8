"""Core Registration Logic Module

This module provides the registration logic independent of the command line.

Module Structure:
    - graph/                   : Directory service HTTP client and app registration
    - authentication.py        : Device code and password token acquisition
    - certificates.py          : Certificate import, generation, export, store
    - consent.py               : Consent URL, propagation wait, browser launch
    - registration_service.py  : End-to-end registration orchestration
    - scopes.py                : Permission scope table and resource grouping
    - tokens.py                : Access token decoding for display
    - validators.py            : Application name and tenant validation
    - exceptions.py            : Error taxonomy

Usage Pattern:
    These modules are NOT auto-imported; msal and cryptography are only
    loaded by the modules that need them.

        from appreg.core.registration_service import RegistrationService, RegistrationRequest
        from appreg.core.scopes import ScopeResolver
"""
