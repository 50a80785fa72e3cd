# tests/factories/__init__.py

from .user_factory import DEFAULT_PASSWORD, TwoFactorPolicyFactory, UserFactory

__all__ = ["DEFAULT_PASSWORD", "TwoFactorPolicyFactory", "UserFactory"]
