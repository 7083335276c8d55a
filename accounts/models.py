from django.contrib.auth.models import AbstractUser
from django.db import models


class Role(models.TextChoices):
    ADMIN = "admin", "Admin"
    STUDENT = "student", "Student"


class User(AbstractUser):
    name = models.CharField(max_length=50, blank=True)
    role = models.CharField(max_length=10, choices=Role.choices, default=Role.STUDENT)
    avatar = models.URLField(blank=True)
    last_seen = models.DateTimeField(null=True, blank=True)

    @property
    def display_name(self):
        return self.name or self.get_full_name() or self.username

    @property
    def is_platform_admin(self) -> bool:
        return self.role == Role.ADMIN

    def __str__(self):
        return f"{self.display_name} ({self.role})"
