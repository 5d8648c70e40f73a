"""
Donation and resource request endpoints.

Both collections expose the same surface (list/create, stats, read,
status update, delete); the views differ only in the workflow and the
serializers they hand the request to.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from portal.serializers.entries import (
    DonationCreateSerializer,
    DonationStatusSerializer,
    RequestCreateSerializer,
    RequestStatusSerializer,
)
from portal.services.ledger import format_entry
from portal.services.workflow import Workflow, donation_workflow, request_workflow


def _collection(request, workflow: Workflow, create_serializer):
    if request.method == 'POST':
        s = create_serializer(data=request.data)
        s.is_valid(raise_exception=True)
        entry = workflow.create(request.user, s.validated_data['type'], s.validated_data['details'])
        return Response({'ok': True, 'data': format_entry(entry)}, status=status.HTTP_201_CREATED)
    entries = workflow.list_for(request.user)
    return Response({'ok': True, 'data': [format_entry(e) for e in entries]})


def _detail(request, workflow: Workflow, status_serializer, entry_id):
    if request.method == 'GET':
        return Response({'ok': True, 'data': format_entry(workflow.get_for(request.user, entry_id))})
    if request.method == 'DELETE':
        workflow.delete(request.user, entry_id)
        return Response({'ok': True, 'data': {'id': str(entry_id), 'deleted': True}})
    s = status_serializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    entry = workflow.transition(
        request.user,
        entry_id,
        vd['status'],
        reason=vd.get('rejectionReason'),
        patient=vd.get('patientId'),
    )
    return Response({'ok': True, 'data': format_entry(entry)})


# ---------------------------------------------------------------------
# Donations
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def donations(request):
    return _collection(request, donation_workflow, DonationCreateSerializer)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def donation_stats(request):
    return Response({'ok': True, 'data': donation_workflow.stats(request.user)})


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def donation_detail(request, entry_id):
    return _detail(request, donation_workflow, DonationStatusSerializer, entry_id)


# ---------------------------------------------------------------------
# Resource requests
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def resource_requests(request):
    return _collection(request, request_workflow, RequestCreateSerializer)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def request_stats(request):
    return Response({'ok': True, 'data': request_workflow.stats(request.user)})


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def request_detail(request, entry_id):
    return _detail(request, request_workflow, RequestStatusSerializer, entry_id)
