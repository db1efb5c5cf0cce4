"""
Models

- models.domain: frozen dataclasses the views hold (Report, User, ...)
- models.api: pydantic envelopes for REST responses
"""
