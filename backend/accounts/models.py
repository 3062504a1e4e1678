from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """
    Customer or staff account. Staff users administer credits.
    """
    email = models.EmailField(unique=True)
    is_active = models.BooleanField(default=True)
    full_name = models.CharField(max_length=150, blank=True, verbose_name="Full Name")
    country = models.CharField(max_length=100, blank=True, verbose_name="Country")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    USERNAME_FIELD = 'username'
    REQUIRED_FIELDS = ['email']

    class Meta:
        db_table = 'user'
        verbose_name = 'User'
        verbose_name_plural = 'Users'

    def __str__(self):
        return self.username

    @property
    def display_name(self) -> str:
        return self.full_name or self.get_full_name() or self.username
