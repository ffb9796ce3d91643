from common.audit import create_audit_log_from_request
from common.utils import emit_change


class ChangeFeedMutationMixin:
    """Emits a change-feed event and an audit row for every admin CRUD write."""

    change_entity = None
    audit_entity = None

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=self.audit_entity,
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def _emit(self, instance, op):
        emit_change(self.change_entity, instance.id, op, self.get_serializer(instance).data)

    def perform_create(self, serializer):
        instance = serializer.save()
        self._emit(instance, "upsert")
        self._audit(action=f"{self.audit_entity}.create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._emit(instance, "upsert")
        self._audit(
            action=f"{self.audit_entity}.update",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        self._emit(instance, "delete")
        self._audit(action=f"{self.audit_entity}.delete", instance=instance, before_snapshot=before_snapshot)
        instance.delete()
