"""
Django admin configuration for companies app.
"""
from django.contrib import admin
from .models import Company, Office


class OfficeInline(admin.TabularInline):
    model = Office
    extra = 0
    fields = ['name', 'is_active']


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'is_active', 'max_seats', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name', 'slug']
    prepopulated_fields = {'slug': ('name',)}
    inlines = [OfficeInline]


@admin.register(Office)
class OfficeAdmin(admin.ModelAdmin):
    list_display = ['name', 'company', 'is_active', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name', 'company__name']
