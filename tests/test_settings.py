"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest

from app.config import DEFAULT_ADMIN_ROLES, Settings
from app.models import Requester


def test_defaults_without_environment() -> None:
    settings = Settings(_env_file=None)

    assert settings.review_max_length == 1_000
    assert settings.review_page_size == 10
    assert settings.admin_roles == DEFAULT_ADMIN_ROLES
    assert settings.tmdb_api_key is None


def test_admin_roles_parsed_case_insensitively() -> None:
    """Comma separated roles should be normalised and de-duplicated."""

    settings = Settings(_env_file=None, ADMIN_ROLES="Admin, moderator,ADMIN")

    assert settings.admin_roles == ("admin", "moderator")


def test_admin_roles_blank_defaults() -> None:
    settings = Settings(_env_file=None, ADMIN_ROLES="")

    assert settings.admin_roles == DEFAULT_ADMIN_ROLES


def test_blank_tmdb_key_treated_as_missing() -> None:
    settings = Settings(_env_file=None, TMDB_API_KEY="   ")

    assert settings.tmdb_api_key is None


def test_page_size_must_fit_limit() -> None:
    with pytest.raises(ValueError, match="must not exceed REVIEW_PAGE_LIMIT"):
        Settings(_env_file=None, REVIEW_PAGE_SIZE=50, REVIEW_PAGE_LIMIT=20)


def test_requester_admin_flag_follows_configured_roles() -> None:
    settings = Settings(_env_file=None, ADMIN_ROLES="moderator")

    moderator = Requester.from_identity("acct-1", "Moderator", settings.admin_roles)
    admin = Requester.from_identity("acct-2", "admin", settings.admin_roles)
    anonymous_role = Requester.from_identity("acct-3", None, settings.admin_roles)

    assert moderator.is_admin is True
    assert admin.is_admin is False
    assert anonymous_role.role == "user"
