import pytest
from django.contrib.auth import get_user_model
from rest_framework import status
from rest_framework.test import APIClient

from conftest import PASSWORD

pytestmark = pytest.mark.django_db


def test_user_defaults(alice):
    assert alice.online_status == get_user_model().STATUS_OFFLINE
    assert alice.last_seen is None
    assert alice.display_name == "Alice"
    assert alice.is_online is False


def test_display_name_falls_back_to_username(db):
    user = get_user_model().objects.create_user(username="zed", email="zed@example.com", password=PASSWORD)
    assert user.display_name == "zed"


def test_obtain_and_refresh_tokens(alice):
    client = APIClient()

    res = client.post("/api/auth/token/", {"email": alice.email, "password": PASSWORD}, format="json")
    assert res.status_code == status.HTTP_200_OK, res.content

    refreshed = client.post("/api/auth/token/refresh/", {"refresh": res.data["refresh"]}, format="json")
    assert refreshed.status_code == status.HTTP_200_OK
    assert "access" in refreshed.data


def test_wrong_password_is_rejected(alice):
    client = APIClient()
    res = client.post("/api/auth/token/", {"email": alice.email, "password": "nope"}, format="json")
    assert res.status_code == status.HTTP_401_UNAUTHORIZED
