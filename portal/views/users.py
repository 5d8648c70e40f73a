from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from portal.models import User
from portal.permissions import IsAdminRole, IsMainAdmin
from portal.serializers.auth import CreateAdminSerializer, ProfileUpdateSerializer
from portal.services import identity, stats


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated])
def profile(request):
    if request.method == 'PATCH':
        s = ProfileUpdateSerializer(data=request.data, context={'user': request.user})
        s.is_valid(raise_exception=True)
        identity.update_profile(request.user, s.validated_data)
    return Response({'ok': True, 'data': identity.format_user(request.user)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsMainAdmin])
def create_admin(request):
    s = CreateAdminSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    admin = identity.create_admin(request.user, s.validated_data)
    return Response({
        'ok': True,
        'message': 'Admin account created successfully',
        'data': identity.format_user(admin),
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def all_users(request):
    users = User.objects.order_by('-date_joined', '-id')
    return Response({'ok': True, 'data': [identity.format_user(u) for u in users]})


@api_view(['DELETE'])
@permission_classes([IsAuthenticated, IsAdminRole])
def delete_user(request, user_id: int):
    identity.delete_user(request.user, user_id)
    return Response({'ok': True, 'message': 'User deleted successfully'})


@api_view(['GET'])
@permission_classes([AllowAny])
def system_stats(request):
    return Response({'ok': True, 'data': stats.system_stats()})
