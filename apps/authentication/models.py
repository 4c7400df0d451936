"""
Authentication models for the messaging backend.
The user record also carries the persisted presence flags.
"""

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.core.validators import EmailValidator
from django.utils.translation import gettext_lazy as _


class User(AbstractUser):
    """
    Custom User model.
    Handles authentication; presence fields are written by the realtime layer only.
    """

    STATUS_ONLINE = 'online'
    STATUS_OFFLINE = 'offline'
    ONLINE_STATUS_CHOICES = [
        (STATUS_ONLINE, 'Online'),
        (STATUS_OFFLINE, 'Offline'),
    ]

    email = models.EmailField(
        _('email address'),
        unique=True,
        validators=[EmailValidator()],
    )

    username = models.CharField(
        max_length=150,
        unique=True,
    )

    phone = models.CharField(max_length=20, blank=True)
    profile_image = models.CharField(
        max_length=500,
        blank=True,
        help_text='URL of the profile picture'
    )

    # Presence (best effort, the in-memory registry is authoritative for routing)
    online_status = models.CharField(
        max_length=10,
        choices=ONLINE_STATUS_CHOICES,
        default=STATUS_OFFLINE,
    )
    last_seen = models.DateTimeField(
        null=True,
        blank=True,
        help_text='Null while the user is online'
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Use email as the unique identifier for authentication
    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['username']

    class Meta:
        db_table = 'users'
        verbose_name = 'User'
        verbose_name_plural = 'Users'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.email} ({self.online_status})"

    @property
    def display_name(self):
        """Return the best display name for the user."""
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name or self.username or self.email.split('@')[0]

    @property
    def is_online(self):
        return self.online_status == self.STATUS_ONLINE
