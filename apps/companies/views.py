"""
Office endpoints.
"""
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.companies.models import Office
from apps.companies.services import OfficeService
from apps.core.middleware import get_request_company_id
from apps.core.permissions import HasCompanyPermission, requires_permissions
from apps.rbac.serializers import OfficeSerializer
from apps.rbac.views import COMPANY_HEADER_PARAMETER


@extend_schema_view(
    get=extend_schema(
        tags=['Offices'],
        summary='List offices',
        parameters=[COMPANY_HEADER_PARAMETER],
        responses={200: OfficeSerializer(many=True)},
    )
)
@requires_permissions('office:read', methods=['GET'])
class OfficeListView(APIView):
    """GET /v1/offices"""

    permission_classes = [HasCompanyPermission]

    def get(self, request):
        offices = Office.objects.for_company(get_request_company_id(request)).order_by('name')
        return Response({'offices': OfficeSerializer(offices, many=True).data})


@extend_schema_view(
    delete=extend_schema(
        tags=['Offices'],
        summary='Delete office',
        description='Removes every grant of the office and clears it as anyone\'s current office.',
        parameters=[COMPANY_HEADER_PARAMETER],
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('office:delete', methods=['DELETE'])
class OfficeDetailView(APIView):
    """DELETE /v1/offices/{id}"""

    permission_classes = [HasCompanyPermission]

    def delete(self, request, office_id):
        purged = OfficeService.delete_office(
            office_id,
            get_request_company_id(request),
            deleted_by=request.user,
            request=request,
        )
        return Response(purged)
