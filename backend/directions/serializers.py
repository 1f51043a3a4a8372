from rest_framework import serializers


class ShardSerializer(serializers.Serializer):
    id = serializers.CharField()
    name = serializers.CharField()
    bbox = serializers.SerializerMethodField()
    backend_endpoint = serializers.CharField()
    readiness_state = serializers.CharField(source="readiness_state.value")
    servable = serializers.BooleanField(source="is_servable")
    artifact_location = serializers.CharField(allow_null=True)
    last_build_error = serializers.CharField(allow_null=True)
    updated_at = serializers.DateTimeField(allow_null=True)

    def get_bbox(self, shard):
        return shard.bbox.as_string()


class ErrorSerializer(serializers.Serializer):
    """{"code": <reason>, "message": ...} plus whatever ids locate the problem."""
    code = serializers.CharField()
    message = serializers.CharField()
    waypoint_index = serializers.IntegerField(required=False)
    shard_ids = serializers.ListField(child=serializers.CharField(), required=False)
