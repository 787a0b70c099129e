from django.conf import settings
from rest_framework import serializers

from .models import Chunk
from .utils import guess_kind


class JobSubmitSerializer(serializers.Serializer):
    source_key = serializers.CharField(max_length=512)
    request_id = serializers.RegexField(r"^[A-Za-z0-9._:-]{1,128}$")
    chunk_duration_seconds = serializers.FloatField(required=False, min_value=0.001)
    # optional; probed from the source when absent
    source_duration = serializers.FloatField(required=False, allow_null=True, min_value=0.001)

    def validate_source_key(self, value):
        if guess_kind(value) == "other":
            raise serializers.ValidationError("Source must be an audio or video file.")
        return value

    def validate(self, attrs):
        attrs.setdefault("chunk_duration_seconds", settings.JOBS_DEFAULT_CHUNK_SECONDS)
        return attrs


class ChunkSerializer(serializers.ModelSerializer):
    class Meta:
        model = Chunk
        fields = [
            "index",
            "start_time",
            "end_time",
            "status",
            "attempts",
            "output_key",
            "error",
            "completed_at",
        ]


class PresignRequestSerializer(serializers.Serializer):
    filename = serializers.CharField()
    content_type = serializers.CharField(required=False, allow_blank=True)


class PresignResponseSerializer(serializers.Serializer):
    key = serializers.CharField()
    url = serializers.URLField()
    headers = serializers.DictField(child=serializers.CharField(), required=False)
