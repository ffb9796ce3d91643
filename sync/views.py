from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.permissions import RoleCapabilityPermission
from sync.models import ChangeEvent
from sync.serializers import ChangeEventSerializer, ChangeFeedQuerySerializer


class ChangeFeedView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "changes.view"}

    def get(self, request):
        query = ChangeFeedQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        since = query.validated_data["since"]
        limit = query.validated_data["limit"]
        entity = query.validated_data.get("entity")

        qs = ChangeEvent.objects.filter(id__gt=since).order_by("id")
        if entity:
            qs = qs.filter(entity=entity)
        events = list(qs[: limit + 1])
        has_more = len(events) > limit
        events = events[:limit]

        cursor = events[-1].id if events else since
        return Response(
            {
                "cursor": cursor,
                "has_more": has_more,
                "results": ChangeEventSerializer(events, many=True).data,
            }
        )
