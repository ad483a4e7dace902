"""
Company and office API URLs.
"""
from django.urls import path

from apps.companies.views import OfficeDetailView, OfficeListView

app_name = 'companies'

urlpatterns = [
    path('offices', OfficeListView.as_view(), name='office-list'),
    path('offices/<uuid:office_id>', OfficeDetailView.as_view(), name='office-detail'),
]
