"""Core application for the LifeLink backend.

This package contains the models, services, serializers, views and route
registrations for donations, resource requests and the hospital approval
workflow.
"""
