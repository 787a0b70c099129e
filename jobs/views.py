from rest_framework import status, views
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from . import queue, store
from .errors import QueueUnavailable
from .results import Accepted, Complete, result_for, to_payload
from .s3 import create_presigned_get, create_presigned_put
from .serializers import (
    ChunkSerializer,
    JobSubmitSerializer,
    PresignRequestSerializer,
    PresignResponseSerializer,
)
from .utils import upload_key_for


class SubmitJobView(views.APIView):
    """
    Accepts {source_key, request_id, chunk_duration_seconds?, source_duration?}
    and enqueues the split. The request id becomes the job id, so a repeated
    submission returns the existing job instead of starting another one.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        ser = JobSubmitSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        job_id = data["request_id"]

        existing = store.get_job(job_id)
        if existing is not None:
            return Response(to_payload(result_for(existing)), status=status.HTTP_200_OK)

        try:
            queue.enqueue_split(
                job_id,
                data["source_key"],
                data["chunk_duration_seconds"],
                data.get("source_duration"),
            )
        except QueueUnavailable:
            return Response({"detail": "Queue unavailable, try again later."},
                            status=status.HTTP_503_SERVICE_UNAVAILABLE)
        return Response(to_payload(Accepted(job_id=job_id)), status=status.HTTP_202_ACCEPTED)


class JobDetailView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, job_id):
        job = store.get_job(job_id)
        if job is None:
            return Response({"detail": "Not found"}, status=404)

        result = result_for(job)
        data = to_payload(result)
        if isinstance(result, Complete):
            # time-limited download URL for the merged artifact
            data["output_url"] = create_presigned_get(result.output_key)
        return Response(data)


class JobChunksView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, job_id):
        job = store.get_job(job_id)
        if job is None:
            return Response({"detail": "Not found"}, status=404)
        chunks = ChunkSerializer(store.list_chunks(job_id), many=True).data
        return Response({"job_id": job_id, "status": job.status, "chunks": chunks})


class PresignUploadView(views.APIView):
    """
    Returns a presigned PUT URL + recommended key so the client can upload
    a source directly to MinIO/S3, then submit a job for that key.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        ser = PresignRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        content_type = ser.validated_data.get("content_type") or None

        key = upload_key_for(ser.validated_data["filename"])
        signed = create_presigned_put(key, content_type=content_type)
        resp = {"key": key, "url": signed["url"], "headers": signed.get("headers", {})}
        out = PresignResponseSerializer(resp).data
        return Response(out, status=201)
