from __future__ import annotations

from django.contrib import admin

from apps.users.models import User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ("id", "handle", "email", "wallet_address", "is_staff", "created_at")
    search_fields = ("email", "handle", "wallet_address")
    readonly_fields = ("created_at", "updated_at", "last_login")
    exclude = ("password",)
