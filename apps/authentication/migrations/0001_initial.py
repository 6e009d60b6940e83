# Generated manually on 2026-10-19 09:00

import django.db.models.deletion
import django.utils.timezone
import uuid
from django.conf import settings
from django.db import migrations, models

import apps.authentication.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        migrations.CreateModel(
            name="User",
            fields=[
                ("password", models.CharField(max_length=128, verbose_name="password")),
                ("last_login", models.DateTimeField(blank=True, null=True, verbose_name="last login")),
                ("is_superuser", models.BooleanField(
                    default=False,
                    help_text="Designates that this user has all permissions without explicitly assigning them.",
                    verbose_name="superuser status",
                )),
                ("is_staff", models.BooleanField(
                    default=False,
                    help_text="Designates whether the user can log into this admin site.",
                    verbose_name="staff status",
                )),
                ("is_active", models.BooleanField(
                    default=True,
                    help_text="Designates whether this user should be treated as active. "
                              "Unselect this instead of deleting accounts.",
                    verbose_name="active",
                )),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("email", models.EmailField(max_length=254, unique=True, verbose_name="Email Address")),
                ("first_name", models.CharField(max_length=150, verbose_name="First Name")),
                ("last_name", models.CharField(max_length=150, verbose_name="Last Name")),
                ("role", models.CharField(
                    choices=[("student", "Student"), ("teacher", "Teacher"), ("admin", "Administrator")],
                    default="student",
                    max_length=20,
                    verbose_name="Role",
                )),
                ("date_joined", models.DateTimeField(default=django.utils.timezone.now, verbose_name="Date Joined")),
                ("groups", models.ManyToManyField(
                    blank=True,
                    related_name="authentication_user_set",
                    related_query_name="authentication_user",
                    to="auth.group",
                    verbose_name="groups",
                )),
                ("user_permissions", models.ManyToManyField(
                    blank=True,
                    related_name="authentication_user_set",
                    related_query_name="authentication_user",
                    to="auth.permission",
                    verbose_name="user permissions",
                )),
            ],
            options={
                "verbose_name": "User",
                "verbose_name_plural": "Users",
                "db_table": "authentication_user",
            },
            managers=[
                ("objects", apps.authentication.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name="AccessLog",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_role", models.CharField(blank=True, max_length=20, verbose_name="User Role")),
                ("resource", models.CharField(max_length=255, verbose_name="Resource")),
                ("required_role", models.CharField(blank=True, max_length=50, verbose_name="Required Role")),
                ("action", models.CharField(max_length=50, verbose_name="Action")),
                ("access_granted", models.BooleanField(default=False, verbose_name="Access Granted")),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.TextField(blank=True, verbose_name="User Agent")),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("user", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="access_logs",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "verbose_name": "Access Log",
                "verbose_name_plural": "Access Logs",
                "db_table": "access_logs",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["user", "access_granted", "created_at"], name="access_user_granted_idx"),
                    models.Index(fields=["resource", "created_at"], name="access_resource_idx"),
                ],
            },
        ),
    ]
